# Tests for method descriptors and the static method table.
# Created: 2026-03-13

from __future__ import annotations

import pytest

from kickmcp.errors import ConfigurationError
from kickmcp.registry.catalog import DESCRIPTORS, MethodDescriptor


class TestMethodDescriptor:
    def test_placeholder_must_be_required(self):
        with pytest.raises(ConfigurationError, match="channel_id"):
            MethodDescriptor("bad", "GET", "/channels/{channel_id}")

    def test_unknown_verb_rejected(self):
        with pytest.raises(ConfigurationError):
            MethodDescriptor("bad", "FETCH", "/x")

    def test_build_path_quotes_values(self):
        d = MethodDescriptor("getCategoryBySlug", "GET", "/categories/{slug}", ("slug",))
        assert d.build_path({"slug": "a b/c"}) == "/categories/a%20b%2Fc"

    def test_build_path_accepts_ints(self):
        d = MethodDescriptor("x", "GET", "/channels/{channel_id}", ("channel_id",))
        assert d.build_path({"channel_id": 123}) == "/channels/123"

    def test_get_params_go_to_query(self):
        d = MethodDescriptor("x", "GET", "/channels/{channel_id}/clips", ("channel_id",))
        query, body = d.split_params({"channel_id": "1", "limit": 5, "access_token": "t"})
        assert query == {"limit": 5}
        assert body is None

    def test_body_params(self):
        d = MethodDescriptor(
            "banUser", "POST", "/channels/{channel_id}/chat/ban",
            ("channel_id", "user_id"), body_params=("user_id", "reason"),
        )
        query, body = d.split_params({"channel_id": "1", "user_id": "9", "access_token": "t"})
        assert query is None
        assert body == {"user_id": "9"}

    def test_body_from(self):
        d = MethodDescriptor(
            "updateChannelInfo", "PATCH", "/channels/{channel_id}", ("channel_id", "data"),
            body_from="data",
        )
        _, body = d.split_params({"channel_id": "1", "data": {"title": "t"}})
        assert body == {"title": "t"}

    def test_default_invalidation_prefix(self):
        d = MethodDescriptor(
            "updateChannelSettings", "PATCH", "/channels/{channel_id}/settings",
            ("channel_id", "data"), body_from="data",
        )
        assert d.invalidation_prefix({"channel_id": "123"}) == "/channels/123"

    def test_explicit_invalidation_prefix(self):
        d = MethodDescriptor(
            "deleteWebhook", "DELETE", "/webhooks/{webhook_id}", ("webhook_id",),
            invalidates="/webhooks",
        )
        assert d.invalidation_prefix({"webhook_id": "w1"}) == "/webhooks"

    def test_json_schema(self):
        d = MethodDescriptor(
            "createPoll", "POST", "/channels/{channel_id}/stream/poll",
            ("channel_id", "title", "options", "duration"),
            body_params=("title", "options", "duration"),
        )
        schema = d.json_schema()
        assert schema["required"] == ["channel_id", "title", "options", "duration"]
        assert schema["properties"]["options"]["type"] == "array"
        assert schema["properties"]["duration"]["type"] == "integer"
        assert "access_token" in schema["properties"]


class TestDescriptorTable:
    def test_names_are_unique(self):
        names = [d.name for d in DESCRIPTORS]
        assert len(names) == len(set(names))

    def test_table_size(self):
        assert len(DESCRIPTORS) >= 80

    @pytest.mark.parametrize("descriptor", DESCRIPTORS, ids=lambda d: d.name)
    def test_placeholders_covered(self, descriptor):
        assert set(descriptor.placeholders) <= set(descriptor.required_params)

    def test_public_methods(self):
        public = {d.name for d in DESCRIPTORS if not d.requires_auth}
        assert public == {
            "getChannelInfo",
            "getLivestreams",
            "getLivestreamBySlug",
            "getCategories",
            "getCategoryBySlug",
            "getCategoryStreams",
            "getPublicKey",
        }

    def test_writes_use_body_or_path(self):
        for d in DESCRIPTORS:
            if d.http_method in ("PATCH", "PUT"):
                assert d.body_from == "data", d.name
