"""Tests for the request interceptor.

Validates that every paused request receives exactly one disposition:

    - Bundle requests under the marker path are fulfilled from disk
    - Everything else continues unmodified
    - Duplicate notifications for the same request are ignored
    - Missing or unreadable cached bundles fall back to passthrough
    - The web client document is served from, or captured into, the web cache
"""

import base64

import pytest

from wabridge.bridge.interceptor import (
    BUNDLE_CONTENT_TYPE,
    BUNDLE_STATUS_CODE,
    Disposition,
    RequestInterceptor,
)
from wabridge.exceptions import AlreadyInstalled
from wabridge.webcache import LocalWebCache, NoWebCache

WEB_URL = "https://web.whatsapp.com/"


def paused(request_id, url, **extra):
    event = {"requestId": request_id, "request": {"url": url}, "resourceType": "Script"}
    event.update(extra)
    return event


@pytest.fixture()
def bundle_dir(tmp_path):
    directory = tmp_path / "dist"
    directory.mkdir()
    (directory / "wppconnect-wa.js").write_text("window.WPP = {isReady: true};", encoding="utf-8")
    return directory


class TestInstall:
    """Tests for enabling interception on a page."""

    @pytest.mark.asyncio
    async def test_install_enables_fetch_for_all_requests(self, page, bundle_dir):
        """Test that install registers the handler and enables Fetch once."""
        interceptor = RequestInterceptor(bundle_dir=bundle_dir)
        await interceptor.install(page)

        assert "Fetch.requestPaused" in page.cdp_client.handlers
        enable = page.cdp_client.send.Fetch.enable
        enable.assert_awaited_once()
        patterns = enable.await_args.kwargs["params"]["patterns"]
        assert patterns == [{"urlPattern": "*", "requestStage": "Request"}]
        assert enable.await_args.kwargs["session_id"] == page.session_id
        assert interceptor.installed

    @pytest.mark.asyncio
    async def test_second_install_raises(self, page, bundle_dir):
        """Test that installing twice raises AlreadyInstalled."""
        interceptor = RequestInterceptor(bundle_dir=bundle_dir)
        await interceptor.install(page)

        with pytest.raises(AlreadyInstalled):
            await interceptor.install(page)
        page.cdp_client.send.Fetch.enable.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_capture_pattern_added_for_writable_cache(self, page, bundle_dir, tmp_path):
        """Test that a writable cache without cached HTML adds a response-stage document pattern first."""
        cache = LocalWebCache(path=tmp_path / "cache")
        interceptor = RequestInterceptor(bundle_dir=bundle_dir, web_url=WEB_URL, web_cache=cache)
        await interceptor.install(page)

        patterns = page.cdp_client.send.Fetch.enable.await_args.kwargs["params"]["patterns"]
        assert patterns[0] == {"urlPattern": WEB_URL, "resourceType": "Document", "requestStage": "Response"}
        assert patterns[1] == {"urlPattern": "*", "requestStage": "Request"}

    @pytest.mark.asyncio
    async def test_no_capture_pattern_for_read_only_cache(self, page, bundle_dir):
        """Test that a non-writable cache never pauses responses."""
        interceptor = RequestInterceptor(bundle_dir=bundle_dir, web_url=WEB_URL, web_cache=NoWebCache())
        await interceptor.install(page)

        patterns = page.cdp_client.send.Fetch.enable.await_args.kwargs["params"]["patterns"]
        assert len(patterns) == 1

    @pytest.mark.asyncio
    async def test_uninstall_disables_fetch(self, page, bundle_dir):
        """Test that uninstall disables Fetch and allows no further dispositions."""
        interceptor = RequestInterceptor(bundle_dir=bundle_dir)
        await interceptor.install(page)
        await interceptor.uninstall()

        page.cdp_client.send.Fetch.disable.assert_awaited_once()
        assert not interceptor.installed


class TestDisposition:
    """Tests for classifying and disposing of paused requests."""

    @pytest.mark.asyncio
    async def test_bundle_request_fulfilled_from_disk(self, page, bundle_dir):
        """Test that a marker-path request with a cached file is fulfilled with the bundle."""
        interceptor = RequestInterceptor(bundle_dir=bundle_dir)
        await interceptor.install(page)

        disposition = await interceptor.handle_request_paused(
            paused("req-1", "https://cdn.example.com/wa-js/dist/wppconnect-wa.js?v=3")
        )

        assert disposition is Disposition.FULFILLED_BUNDLE
        fulfill = page.cdp_client.send.Fetch.fulfillRequest
        fulfill.assert_awaited_once()
        params = fulfill.await_args.kwargs["params"]
        assert params["requestId"] == "req-1"
        assert params["responseCode"] == BUNDLE_STATUS_CODE == 201
        assert params["responseHeaders"] == [{"name": "Content-Type", "value": BUNDLE_CONTENT_TYPE}]
        assert base64.b64decode(params["body"]).decode("utf-8") == "window.WPP = {isReady: true};"
        page.cdp_client.send.Fetch.continueRequest.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unrelated_request_continues(self, page, bundle_dir):
        """Test that requests outside the marker path pass through."""
        interceptor = RequestInterceptor(bundle_dir=bundle_dir)
        await interceptor.install(page)

        disposition = await interceptor.handle_request_paused(paused("req-2", "https://web.whatsapp.com/app.js"))

        assert disposition is Disposition.CONTINUED
        page.cdp_client.send.Fetch.continueRequest.assert_awaited_once_with(
            params={"requestId": "req-2"}, session_id=page.session_id
        )
        page.cdp_client.send.Fetch.fulfillRequest.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_marker_only_in_query_string_continues(self, page, bundle_dir):
        """Test that the marker must appear in the URL path, not the query."""
        interceptor = RequestInterceptor(bundle_dir=bundle_dir)
        await interceptor.install(page)

        disposition = await interceptor.handle_request_paused(
            paused("req-3", "https://example.com/wppconnect-wa.js?from=dist")
        )

        assert disposition is Disposition.CONTINUED

    @pytest.mark.asyncio
    async def test_missing_bundle_file_falls_back_to_passthrough(self, page, bundle_dir):
        """Test that a marker-path request without a cached file continues."""
        interceptor = RequestInterceptor(bundle_dir=bundle_dir)
        await interceptor.install(page)

        disposition = await interceptor.handle_request_paused(
            paused("req-4", "https://cdn.example.com/dist/other-bundle.js")
        )

        assert disposition is Disposition.CONTINUED
        page.cdp_client.send.Fetch.fulfillRequest.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_duplicate_notification_ignored(self, page, bundle_dir):
        """Test that a second pause for the same request id and stage is not answered again."""
        interceptor = RequestInterceptor(bundle_dir=bundle_dir)
        await interceptor.install(page)
        event = paused("req-5", "https://web.whatsapp.com/app.js")

        first = await interceptor.handle_request_paused(event)
        second = await interceptor.handle_request_paused(event)

        assert first is Disposition.CONTINUED
        assert second is None
        page.cdp_client.send.Fetch.continueRequest.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_disposition_is_recorded(self, page, bundle_dir):
        """Test that a CDP failure while answering is logged and recorded, not raised."""
        page.cdp_client.send.Fetch.continueRequest.side_effect = RuntimeError("Invalid InterceptionId")
        interceptor = RequestInterceptor(bundle_dir=bundle_dir)
        await interceptor.install(page)

        disposition = await interceptor.handle_request_paused(paused("req-6", "https://example.com/x.png"))

        assert disposition is Disposition.FAILED
        assert interceptor.dispositions[("req-6", "Request")] is Disposition.FAILED

    @pytest.mark.asyncio
    async def test_failed_fulfill_continues_request(self, page, bundle_dir):
        """Test that a bundle request whose fulfillment fails is let through instead of left paused."""
        page.cdp_client.send.Fetch.fulfillRequest.side_effect = RuntimeError("Invalid InterceptionId")
        interceptor = RequestInterceptor(bundle_dir=bundle_dir)
        await interceptor.install(page)

        disposition = await interceptor.handle_request_paused(
            paused("req-7", "https://cdn.example.com/dist/wppconnect-wa.js")
        )

        assert disposition is Disposition.CONTINUED
        page.cdp_client.send.Fetch.continueRequest.assert_awaited_once_with(
            params={"requestId": "req-7"}, session_id=page.session_id
        )

    @pytest.mark.asyncio
    async def test_failed_fulfill_and_continue_recorded_as_failed(self, page, bundle_dir):
        page.cdp_client.send.Fetch.fulfillRequest.side_effect = RuntimeError("Target closed")
        page.cdp_client.send.Fetch.continueRequest.side_effect = RuntimeError("Target closed")
        interceptor = RequestInterceptor(bundle_dir=bundle_dir, web_url=WEB_URL, cached_html="<html></html>")
        await interceptor.install(page)

        disposition = await interceptor.handle_request_paused(paused("req-8", WEB_URL, resourceType="Document"))

        assert disposition is Disposition.FAILED
        page.cdp_client.send.Fetch.continueRequest.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_every_request_gets_exactly_one_disposition(self, page, bundle_dir):
        """Test exactly-once disposition across notifications delivered through the CDP handler."""
        interceptor = RequestInterceptor(bundle_dir=bundle_dir)
        await interceptor.install(page)
        urls = [
            "https://cdn.example.com/dist/wppconnect-wa.js",
            "https://web.whatsapp.com/",
            "https://web.whatsapp.com/app.js",
            "https://cdn.example.com/dist/missing.js",
            "https://static.whatsapp.net/rsrc.php",
        ]
        events = [paused(f"req-{i}", url) for i, url in enumerate(urls)]

        for event in events + events[::2]:
            page.cdp_client.emit("Fetch.requestPaused", event, page.session_id)
        await interceptor.wait_idle()

        send = page.cdp_client.send.Fetch
        answered = [call.kwargs["params"]["requestId"] for call in send.fulfillRequest.await_args_list]
        answered += [call.kwargs["params"]["requestId"] for call in send.continueRequest.await_args_list]
        assert sorted(answered) == sorted(event["requestId"] for event in events)
        assert set(interceptor.dispositions) == {(event["requestId"], "Request") for event in events}

    @pytest.mark.asyncio
    async def test_notifications_for_other_sessions_ignored(self, page, bundle_dir):
        """Test that pauses from another CDP session are left alone."""
        interceptor = RequestInterceptor(bundle_dir=bundle_dir)
        await interceptor.install(page)

        page.cdp_client.emit("Fetch.requestPaused", paused("req-x", "https://example.com/"), "SESSION-OTHER")
        await interceptor.wait_idle()

        assert interceptor.dispositions == {}
        page.cdp_client.send.Fetch.continueRequest.assert_not_awaited()


class TestWebVersionDocument:
    """Tests for serving and capturing the web client document."""

    @pytest.mark.asyncio
    async def test_cached_html_served_for_web_url(self, page, bundle_dir):
        """Test that cached HTML answers the document request with 200 text/html."""
        html = '<html><link rel="manifest" href="/data/manifest-2.3000.1.json"></html>'
        interceptor = RequestInterceptor(bundle_dir=bundle_dir, web_url=WEB_URL, cached_html=html)
        await interceptor.install(page)

        disposition = await interceptor.handle_request_paused(paused("doc-1", WEB_URL, resourceType="Document"))

        assert disposition is Disposition.FULFILLED_HTML
        params = page.cdp_client.send.Fetch.fulfillRequest.await_args.kwargs["params"]
        assert params["responseCode"] == 200
        assert params["responseHeaders"] == [{"name": "Content-Type", "value": "text/html"}]
        assert base64.b64decode(params["body"]).decode("utf-8") == html

    @pytest.mark.asyncio
    async def test_response_stage_captures_document(self, page, bundle_dir, tmp_path):
        """Test that the live document is persisted to a writable cache before continuing."""
        html = '<html><link rel="manifest" href="/data/manifest-2.3000.1015.json"></html>'
        page.cdp_client.send.Fetch.getResponseBody.return_value = {
            "body": base64.b64encode(html.encode("utf-8")).decode("ascii"),
            "base64Encoded": True,
        }
        cache = LocalWebCache(path=tmp_path / "cache")
        interceptor = RequestInterceptor(bundle_dir=bundle_dir, web_url=WEB_URL, web_cache=cache)
        await interceptor.install(page)

        disposition = await interceptor.handle_request_paused(
            paused("doc-2", WEB_URL, resourceType="Document", responseStatusCode=200)
        )

        assert disposition is Disposition.CAPTURED
        assert (tmp_path / "cache" / "2.3000.1015.html").read_text(encoding="utf-8") == html
        page.cdp_client.send.Fetch.continueRequest.assert_awaited_once_with(
            params={"requestId": "doc-2"}, session_id=page.session_id
        )

    @pytest.mark.asyncio
    async def test_request_and_response_stage_are_separate_dispositions(self, page, bundle_dir, tmp_path):
        """Test that one request id paused at both stages is answered once per stage."""
        page.cdp_client.send.Fetch.getResponseBody.return_value = {"body": "<html></html>", "base64Encoded": False}
        cache = LocalWebCache(path=tmp_path / "cache")
        interceptor = RequestInterceptor(bundle_dir=bundle_dir, web_url=WEB_URL, web_cache=cache)
        await interceptor.install(page)

        await interceptor.handle_request_paused(paused("doc-3", WEB_URL, resourceType="Document"))
        await interceptor.handle_request_paused(
            paused("doc-3", WEB_URL, resourceType="Document", responseStatusCode=200)
        )

        assert interceptor.dispositions == {
            ("doc-3", "Request"): Disposition.CONTINUED,
            ("doc-3", "Response"): Disposition.CAPTURED,
        }
        assert page.cdp_client.send.Fetch.continueRequest.await_count == 2
