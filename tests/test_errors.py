from m365_core.errors import (
    AuthenticationError,
    InternalError,
    InvalidParamsError,
    UpstreamError,
    error_result,
    handle_tool_errors,
)
from tests.conftest import result_text, run


def test_error_string_carries_kind_and_code():
    assert str(InvalidParamsError("bad")) == "invalid_params (-32602): bad"
    assert str(UpstreamError("down", status=503)) == "upstream_error (-32001): down"
    assert str(AuthenticationError("no", status=401)).startswith("authentication_error (-32001)")


def test_guidance_by_status():
    assert "Insufficient permissions" in UpstreamError("x", status=403).guidance
    assert "Network connectivity" in UpstreamError("x").guidance
    assert "Network connectivity" in UpstreamError("x", status=502).guidance
    assert UpstreamError("x", status=418).guidance == ""


def test_error_result_structure():
    result = error_result(UpstreamError("throttled", status=429, details="slow"), "retry later")

    assert result.isError
    assert "🔧 This usually means:\nretry later" in result_text(result)
    assert result.structuredContent["error"] == {
        "kind": "upstream_error",
        "code": -32001,
        "message": "throttled",
        "data": {"status": 429, "details": "slow"},
    }


def test_decorator_wraps_unexpected_exceptions():
    @handle_tool_errors
    async def broken():
        raise KeyError("id")

    result = run(broken())

    assert result.isError
    assert result.structuredContent["error"]["kind"] == InternalError.kind
    assert "KeyError" in result_text(result)


def test_decorator_passes_results_through():
    @handle_tool_errors
    async def fine():
        return "ok"

    assert run(fine()) == "ok"
