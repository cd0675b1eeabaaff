from shulam_x402.routes import path_is_match


class TestExactMatch:
    def test_exact_match_success(self):
        assert path_is_match("/api/data", "/api/data") is True

    def test_exact_match_failure(self):
        assert path_is_match("/api/data", "/api/other") is False

    def test_exact_match_trailing_slash(self):
        assert path_is_match("/api/data", "/api/data/") is False

    def test_exact_match_case_sensitive(self):
        assert path_is_match("/API/Data", "/api/data") is False


class TestGlobPatterns:
    def test_single_wildcard_crosses_segments(self):
        # fnmatch * matches any characters including /
        assert path_is_match("/api/*", "/api/data") is True
        assert path_is_match("/api/*", "/api/data/123") is True
        assert path_is_match("/api/*", "/other/path") is False

    def test_middle_wildcard(self):
        assert path_is_match("/items/*/price", "/items/42/price") is True
        assert path_is_match("/items/*/price", "/items/42/stock") is False

    def test_question_mark_wildcard(self):
        assert path_is_match("/api/v?", "/api/v2") is True
        assert path_is_match("/api/v?", "/api/v") is False


class TestRegexPatterns:
    def test_regex_anchored(self):
        assert path_is_match(r"regex:^/items/\d+$", "/items/123") is True
        assert path_is_match(r"regex:^/items/\d+$", "/items/abc") is False

    def test_regex_matches_from_start_only(self):
        assert path_is_match("regex:/api", "/api/data") is True
        assert path_is_match("regex:data", "/api/data") is False


class TestListPatterns:
    def test_list_with_mixed_patterns(self):
        patterns = ["/api/data", "/items/*", "regex:^/v2/.*$"]
        assert path_is_match(patterns, "/api/data") is True
        assert path_is_match(patterns, "/items/7") is True
        assert path_is_match(patterns, "/v2/anything") is True
        assert path_is_match(patterns, "/other") is False

    def test_empty_list(self):
        assert path_is_match([], "/api/data") is False


class TestEdgeCases:
    def test_root_path(self):
        assert path_is_match("/", "/") is True
        assert path_is_match("/*", "/anything") is True

    def test_invalid_type_returns_false(self):
        assert path_is_match(123, "/api/data") is False  # type: ignore
        assert path_is_match(None, "/api/data") is False  # type: ignore
