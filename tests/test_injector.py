"""Tests for the script injector.

Covers appending the bundle, waiting for its readiness flag, retrying
through navigation races and the injection deadline.
"""

import pytest

from wabridge.bridge.injector import ScriptInjector
from wabridge.exceptions import AlreadyInjected, InjectionTimeout


def scripted_evaluate(poll_results, append_results=None):
    """Build a Runtime.evaluate side effect answering append and poll expressions in turn."""
    polls = iter(poll_results)
    appends = iter(append_results or [])
    seen = {"append": 0, "poll": 0}

    async def evaluate(params=None, session_id=None):
        expression = params["expression"]
        if "appendChild" in expression:
            seen["append"] += 1
            value = next(appends, True)
        else:
            seen["poll"] += 1
            value = next(polls, "pending")
        if isinstance(value, BaseException):
            raise value
        return {"result": {"type": "string", "value": value}}

    return evaluate, seen


@pytest.fixture()
def bundle_file(tmp_path):
    path = tmp_path / "wppconnect-wa.js"
    path.write_text("window.WPP = {isReady: true}; // </script>", encoding="utf-8")
    return path


class TestScriptInjector:
    """Tests for ScriptInjector.inject()."""

    def test_requires_a_bundle_source(self):
        """Test that an injector without path or url is rejected."""
        with pytest.raises(ValueError):
            ScriptInjector()

    @pytest.mark.asyncio
    async def test_inject_returns_when_ready(self, page, bundle_file):
        """Test that inject appends the inline bundle and returns once ready."""
        evaluate, seen = scripted_evaluate(["pending", "ready"])
        page.cdp_client.send.Runtime.evaluate.side_effect = evaluate
        injector = ScriptInjector(bundle_path=bundle_file, poll_interval=0.01)

        await injector.inject(page, timeout=1.0)

        assert injector.injected
        assert seen == {"append": 1, "poll": 2}
        first_expression = page.cdp_client.send.Runtime.evaluate.await_args_list[0].kwargs["params"]["expression"]
        assert "script.text = " in first_expression
        assert "window.WPP = {isReady: true}" in first_expression

    @pytest.mark.asyncio
    async def test_inject_by_url_sets_src(self, page):
        """Test that a bundle url is appended as the script src."""
        evaluate, _ = scripted_evaluate(["ready"])
        page.cdp_client.send.Runtime.evaluate.side_effect = evaluate
        injector = ScriptInjector(bundle_url="https://cdn.example.com/dist/wppconnect-wa.js", poll_interval=0.01)

        await injector.inject(page, timeout=1.0)

        first_expression = page.cdp_client.send.Runtime.evaluate.await_args_list[0].kwargs["params"]["expression"]
        assert 'script.src = "https://cdn.example.com/dist/wppconnect-wa.js";' in first_expression

    @pytest.mark.asyncio
    async def test_waits_for_document_and_retries_errors(self, page, bundle_file):
        """Test that a missing document and a destroyed context are retried."""
        evaluate, seen = scripted_evaluate(
            ["ready"],
            append_results=[False, RuntimeError("Execution context was destroyed"), True],
        )
        page.cdp_client.send.Runtime.evaluate.side_effect = evaluate
        injector = ScriptInjector(bundle_path=bundle_file, poll_interval=0.01)

        await injector.inject(page, timeout=1.0)

        assert seen["append"] == 3

    @pytest.mark.asyncio
    async def test_reappends_after_navigation(self, page, bundle_file):
        """Test that a fresh document without the bundle gets it appended again."""
        evaluate, seen = scripted_evaluate(["pending", "missing", "ready"])
        page.cdp_client.send.Runtime.evaluate.side_effect = evaluate
        injector = ScriptInjector(bundle_path=bundle_file, poll_interval=0.01)

        await injector.inject(page, timeout=1.0)

        assert seen["append"] == 2

    @pytest.mark.asyncio
    async def test_never_ready_raises_injection_timeout(self, page, bundle_file):
        """Test that a bundle that never becomes ready raises InjectionTimeout."""
        evaluate, _ = scripted_evaluate([])
        page.cdp_client.send.Runtime.evaluate.side_effect = evaluate
        injector = ScriptInjector(bundle_path=bundle_file, ready_expression="window.WPP?.isReady", poll_interval=0.01)

        with pytest.raises(InjectionTimeout) as exc_info:
            await injector.inject(page, timeout=0.1)

        assert exc_info.value.timeout == 0.1
        assert exc_info.value.ready_expression == "window.WPP?.isReady"
        assert isinstance(exc_info.value, TimeoutError)

    @pytest.mark.asyncio
    async def test_second_inject_raises(self, page, bundle_file):
        """Test that an injector can only be used once."""
        evaluate, _ = scripted_evaluate(["ready"])
        page.cdp_client.send.Runtime.evaluate.side_effect = evaluate
        injector = ScriptInjector(bundle_path=bundle_file, poll_interval=0.01)
        await injector.inject(page, timeout=1.0)

        with pytest.raises(AlreadyInjected):
            await injector.inject(page, timeout=1.0)

    @pytest.mark.asyncio
    async def test_exception_details_treated_as_not_ready(self, page, bundle_file):
        """Test that a throwing readiness expression keeps polling."""
        results = iter([
            {"result": {"value": True}},
            {"result": {"type": "object"}, "exceptionDetails": {"text": "Uncaught"}},
            {"result": {"value": "ready"}},
        ])

        async def evaluate(params=None, session_id=None):
            return next(results)

        page.cdp_client.send.Runtime.evaluate.side_effect = evaluate
        injector = ScriptInjector(bundle_path=bundle_file, poll_interval=0.01)

        await injector.inject(page, timeout=1.0)

        assert page.cdp_client.send.Runtime.evaluate.await_count == 3
