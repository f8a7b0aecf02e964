"""Static table of pass-through Kick API methods.

Every entry is a :class:`MethodDescriptor`; the dispatcher turns each one
into an ``UpstreamOperation``. Placeholders in ``path_template`` use the
``{name}`` form and must be listed in ``required_params``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

from kickmcp.errors import ConfigurationError

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")

_PLACEHOLDER = re.compile(r"\{([a-zA-Z_][a-zA-Z0-9_]*)\}")

# JSON-schema types for params that aren't plain strings
PARAM_TYPES: dict[str, str] = {
    "data": "object",
    "options": "array",
    "events": "array",
    "duration": "integer",
    "limit": "integer",
    "page": "integer",
}

PAGINATION = ("limit", "page")


@dataclass(frozen=True)
class MethodDescriptor:
    """One upstream REST call exposed as a named method.

    Attributes:
        name: Public method name (``getChannelInfo``).
        http_method: Upstream verb.
        path_template: Path relative to the API root, ``{param}`` placeholders.
        required_params: Checked in order; the first missing one is reported.
        requires_auth: Whether a Bearer token must be resolved.
        body_params: Params copied into the JSON body (non-GET only).
        body_from: Param whose object value *is* the JSON body (``data``).
        query_params: Optional query-string params (GET/DELETE).
        invalidates: Cache prefix template dropped after a successful write.
    """

    name: str
    http_method: str
    path_template: str
    required_params: tuple[str, ...] = ()
    requires_auth: bool = True
    description: str = ""
    body_params: tuple[str, ...] = ()
    body_from: str | None = None
    query_params: tuple[str, ...] = ()
    invalidates: str | None = None
    placeholders: tuple[str, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.http_method not in HTTP_METHODS:
            raise ConfigurationError(f"{self.name}: unsupported HTTP method {self.http_method!r}")
        if not self.path_template.startswith("/"):
            raise ConfigurationError(f"{self.name}: path template must start with '/'")
        found = tuple(_PLACEHOLDER.findall(self.path_template))
        missing = [p for p in found if p not in self.required_params]
        if missing:
            raise ConfigurationError(
                f"{self.name}: placeholder(s) {', '.join(missing)} not in required_params"
            )
        if self.invalidates:
            extra = [p for p in _PLACEHOLDER.findall(self.invalidates) if p not in found]
            if extra:
                raise ConfigurationError(
                    f"{self.name}: invalidation prefix uses unknown placeholder(s) {', '.join(extra)}"
                )
        object.__setattr__(self, "placeholders", found)

    @property
    def is_read(self) -> bool:
        return self.http_method == "GET"

    def build_path(self, params: dict[str, Any]) -> str:
        return _fill(self.path_template, params)

    def invalidation_prefix(self, params: dict[str, Any]) -> str:
        """Cache prefix a successful write makes stale.

        Defaults to the first two segments of the concrete path, so a PATCH of
        ``/channels/123/settings`` drops cached ``/channels/123/...`` reads.
        """
        if self.invalidates:
            return _fill(self.invalidates, params)
        segments = [s for s in self.build_path(params).split("/") if s]
        return "/" + "/".join(segments[:2])

    def split_params(self, params: dict[str, Any]) -> tuple[dict[str, Any] | None, Any]:
        """Return ``(query, body)`` for the upstream request."""
        if self.http_method in ("GET", "DELETE"):
            skip = set(self.placeholders) | {"access_token"}
            query = {k: v for k, v in params.items() if k not in skip and v is not None}
            return query or None, None
        if self.body_from is not None:
            return None, params.get(self.body_from)
        if self.body_params:
            return None, {k: params[k] for k in self.body_params if params.get(k) is not None}
        return None, None

    def json_schema(self) -> dict[str, Any]:
        """JSON schema of the method's arguments (for ``tools/list``)."""
        names: list[str] = []
        for group in (self.required_params, self.body_params, self.query_params):
            for name in group:
                if name not in names:
                    names.append(name)
        if self.body_from and self.body_from not in names:
            names.append(self.body_from)

        properties: dict[str, Any] = {
            name: {"type": PARAM_TYPES.get(name, "string")} for name in names
        }
        if "options" in properties:
            properties["options"]["items"] = {"type": "string"}
        if "events" in properties:
            properties["events"]["items"] = {"type": "string"}
        if self.requires_auth:
            properties["access_token"] = {
                "type": "string",
                "description": "OAuth access token; defaults to the stored token",
            }
        return {
            "type": "object",
            "properties": properties,
            "required": list(self.required_params),
        }


def _fill(template: str, params: dict[str, Any]) -> str:
    return _PLACEHOLDER.sub(lambda m: quote(str(params[m.group(1)]), safe=""), template)


# -- table -------------------------------------------------------------------


def _get(name, path, *required, auth=True, query=PAGINATION, description=""):
    return MethodDescriptor(
        name, "GET", path, tuple(required), auth, description, query_params=tuple(query)
    )


def _channel_get(name, suffix, description="", *extra):
    return _get(name, "/channels/{channel_id}" + suffix, "channel_id", *extra, description=description)


def _write(name, verb, path, *required, body=(), body_from=None, invalidates=None, description=""):
    return MethodDescriptor(
        name,
        verb,
        path,
        tuple(required),
        True,
        description,
        body_params=tuple(body),
        body_from=body_from,
        invalidates=invalidates,
    )


DESCRIPTORS: tuple[MethodDescriptor, ...] = (
    # Users
    _get("getUserProfile", "/users/me", query=(), description="Get the authenticated user's profile"),
    _write("updateUserProfile", "PATCH", "/users/me", "data", body_from="data",
           description="Update the authenticated user's profile"),
    _get("getUserSubscriptions", "/users/me/subscriptions", description="Get user subscriptions"),
    _get("getUserClips", "/users/me/clips", description="Get the user's clips"),
    _get("getUserVideos", "/users/me/videos", description="Get the user's videos"),
    _get("getUserHighlights", "/users/me/highlights", description="Get the user's highlights"),
    _get("getUserScheduledStreams", "/users/me/scheduled-streams",
         description="Get the user's scheduled streams"),
    _get("getUserNotifications", "/users/me/notifications", description="Get user notifications"),
    _get("getUserWallet", "/users/me/wallet", query=(), description="Get the user's wallet"),
    _get("getUserGifts", "/users/me/gifts", description="Get gifts sent or received"),
    _get("getUserEmotes", "/users/me/emotes", description="Get the user's emotes"),
    _get("getUserBadges", "/users/me/badges", description="Get the user's badges"),
    _get("getUserFollows", "/users/me/follows", description="Get channels the user follows"),
    _get("getUserBlockedUsers", "/users/me/blocked", description="Get blocked users"),
    # Chat
    _channel_get("getChatMessages", "/chat/messages", "Get recent chat messages"),
    _write("sendChatMessage", "POST", "/channels/{channel_id}/chat/messages",
           "channel_id", "message", body=("message",), description="Send a chat message"),
    _channel_get("getChatSettings", "/chat/settings", "Get chat settings"),
    _channel_get("getChannelChatRules", "/chat/rules", "Get channel chat rules"),
    _channel_get("getChannelChatCommands", "/chat/commands", "Get channel chat commands"),
    _write("updateChannelChatSettings", "PATCH", "/channels/{channel_id}/chat/settings",
           "channel_id", "data", body_from="data", description="Update chat settings"),
    # Chat moderation
    _write("banUser", "POST", "/channels/{channel_id}/chat/ban", "channel_id", "user_id",
           body=("user_id", "reason"), description="Ban a user from chat"),
    _write("unbanUser", "POST", "/channels/{channel_id}/chat/unban", "channel_id", "user_id",
           body=("user_id",), description="Unban a user"),
    _write("timeoutUser", "POST", "/channels/{channel_id}/chat/timeout",
           "channel_id", "user_id", "duration", body=("user_id", "duration"),
           description="Time a user out of chat"),
    _write("deleteMessage", "DELETE", "/channels/{channel_id}/chat/messages/{message_id}",
           "channel_id", "message_id", description="Delete a chat message"),
    _write("clearChat", "POST", "/channels/{channel_id}/chat/clear", "channel_id",
           description="Clear all chat messages"),
    _channel_get("getChatUserInfo", "/chat/users/{user_id}", "Get a chatter's info", "user_id"),
    _write("addModerator", "POST", "/channels/{channel_id}/moderators", "channel_id", "user_id",
           body=("user_id",), description="Add a channel moderator"),
    _write("removeModerator", "DELETE", "/channels/{channel_id}/moderators/{user_id}",
           "channel_id", "user_id", description="Remove a channel moderator"),
    _write("addVIP", "POST", "/channels/{channel_id}/vips", "channel_id", "user_id",
           body=("user_id",), description="Add a channel VIP"),
    _write("removeVIP", "DELETE", "/channels/{channel_id}/vips/{user_id}",
           "channel_id", "user_id", description="Remove a channel VIP"),
    # Channels
    _get("getChannelInfo", "/channels/{channel_id}", "channel_id", auth=False, query=(),
         description="Get channel information"),
    _channel_get("getChannelFollowers", "/followers", "Get channel followers"),
    _channel_get("getChannelSubscribers", "/subscribers", "Get channel subscribers"),
    _channel_get("getChannelClips", "/clips", "Get channel clips"),
    _channel_get("getChannelVideos", "/videos", "Get channel videos"),
    _channel_get("getChannelHighlights", "/highlights", "Get channel highlights"),
    _channel_get("getChannelScheduledStreams", "/scheduled-streams", "Get scheduled streams"),
    _channel_get("getChannelCategories", "/categories", "Get channel categories"),
    _channel_get("getChannelTags", "/tags", "Get channel tags"),
    _channel_get("getChannelGifts", "/gifts", "Get channel gifts"),
    _channel_get("getChannelRaids", "/raids", "Get channel raids"),
    _channel_get("getChannelHosts", "/hosts", "Get channel hosts"),
    _channel_get("getChannelEmotes", "/emotes", "Get channel emotes"),
    _channel_get("getChannelBadges", "/badges", "Get channel badges"),
    _channel_get("getChannelModerators", "/moderators", "Get channel moderators"),
    _channel_get("getChannelBans", "/bans", "Get banned users"),
    _channel_get("getChannelVips", "/vips", "Get channel VIPs"),
    _channel_get("getChannelSubscriberBadges", "/subscriber-badges", "Get subscriber badges"),
    _write("updateChannelInfo", "PATCH", "/channels/{channel_id}", "channel_id", "data",
           body_from="data", description="Update channel information"),
    _write("updateChannelSettings", "PATCH", "/channels/{channel_id}/settings",
           "channel_id", "data", body_from="data", description="Update channel settings"),
    # Streams
    _channel_get("getStreamInfo", "/stream", "Get the live stream's info"),
    _channel_get("getStreamChatters", "/stream/chatters", "Get current chatters"),
    _channel_get("getStreamViewers", "/stream/viewers", "Get current viewers"),
    _channel_get("getStreamCategories", "/stream/categories", "Get stream categories"),
    _channel_get("getStreamTags", "/stream/tags", "Get stream tags"),
    _channel_get("getStreamStats", "/stream/stats", "Get stream statistics"),
    _channel_get("getStreamClips", "/stream/clips", "Get clips of the current stream"),
    _channel_get("getStreamHighlights", "/stream/highlights", "Get stream highlights"),
    _channel_get("getStreamMarkers", "/stream/markers", "Get stream markers"),
    _channel_get("getStreamPoll", "/stream/poll", "Get the active poll"),
    _channel_get("getStreamPredictions", "/stream/predictions", "Get stream predictions"),
    _channel_get("getStreamRaids", "/stream/raids", "Get stream raids"),
    _channel_get("getStreamHosts", "/stream/hosts", "Get stream hosts"),
    _write("startStream", "POST", "/channels/{channel_id}/stream/start", "channel_id",
           description="Start a stream"),
    _write("endStream", "POST", "/channels/{channel_id}/stream/end", "channel_id",
           description="End the current stream"),
    _write("updateStreamInfo", "PATCH", "/channels/{channel_id}/stream", "channel_id", "data",
           body_from="data", description="Update stream information"),
    _write("updateStreamSettings", "PATCH", "/channels/{channel_id}/stream/settings",
           "channel_id", "data", body_from="data", description="Update stream settings"),
    # Stream interaction
    _write("createPoll", "POST", "/channels/{channel_id}/stream/poll",
           "channel_id", "title", "options", "duration", body=("title", "options", "duration"),
           description="Create a poll"),
    _write("endPoll", "POST", "/channels/{channel_id}/stream/poll/{poll_id}/end",
           "channel_id", "poll_id", description="End a poll"),
    _write("createPrediction", "POST", "/channels/{channel_id}/stream/prediction",
           "channel_id", "title", "options", "duration", body=("title", "options", "duration"),
           description="Create a prediction"),
    _write("endPrediction", "POST", "/channels/{channel_id}/stream/prediction/{prediction_id}/end",
           "channel_id", "prediction_id", "winning_outcome_id", body=("winning_outcome_id",),
           description="Resolve a prediction"),
    _write("createMarker", "POST", "/channels/{channel_id}/stream/marker",
           "channel_id", "description", body=("description",), description="Create a stream marker"),
    # Events
    _write("subscribeToEvents", "POST", "/events/subscribe", "events", body=("events",),
           invalidates="/events/subscriptions", description="Subscribe to events"),
    _write("unsubscribeFromEvents", "POST", "/events/unsubscribe", "events", body=("events",),
           invalidates="/events/subscriptions", description="Unsubscribe from events"),
    _get("getEventSubscriptions", "/events/subscriptions", query=(),
         description="List event subscriptions"),
    _get("getEventTypes", "/events/types", query=(), description="List available event types"),
    _get("getEventTypeSchema", "/events/types/{event_type}/schema", "event_type", query=(),
         description="Get the payload schema of an event type"),
    # Livestreams and categories
    _get("getLivestreams", "/livestreams", auth=False, description="List live streams"),
    _get("getLivestreamBySlug", "/livestreams/{slug}", "slug", auth=False, query=(),
         description="Get a live stream by channel slug"),
    _get("getLivestreamCategories", "/livestreams/categories", description="List livestream categories"),
    _get("getLivestreamTags", "/livestreams/tags", description="List livestream tags"),
    _get("getCategories", "/categories", auth=False, query=("limit", "page", "q"),
         description="List categories"),
    _get("getCategoryBySlug", "/categories/{slug}", "slug", auth=False, query=(),
         description="Get a category by slug"),
    _get("getCategoryStreams", "/categories/{slug}/streams", "slug", auth=False,
         description="List streams in a category"),
    # Webhooks
    _write("createWebhook", "POST", "/webhooks", "url", "events", body=("url", "events"),
           description="Create a webhook subscription"),
    _write("deleteWebhook", "DELETE", "/webhooks/{webhook_id}", "webhook_id",
           invalidates="/webhooks", description="Delete a webhook subscription"),
    _get("listWebhooks", "/webhooks", query=(), description="List webhook subscriptions"),
    _get("getWebhookEvents", "/webhooks/events", query=(), description="List webhook event types"),
    _get("getWebhookPayloads", "/webhooks/payloads/{event_type}", "event_type", query=(),
         description="Get example payloads for a webhook event"),
    _write("retryWebhook", "POST", "/webhooks/{webhook_id}/retry", "webhook_id", "message_id",
           body=("message_id",), description="Retry a webhook delivery"),
    _get("getWebhookDeliveryStatus", "/webhooks/{webhook_id}/deliveries", "webhook_id",
         description="Get webhook delivery status"),
    _get("getPublicKey", "/public-key", auth=False, query=(),
         description="Get the platform public key for webhook verification"),
    # Tokens
    _get("validateToken", "/oauth2/validate", query=(), description="Validate an access token"),
)
