"""Tests for oidccli.flow.listener -- the single-shot redirect listener."""

from __future__ import annotations

import socket
import threading
from http.client import HTTPConnection

import pytest

from oidccli.exceptions import (
    ListenerCancelledError,
    ListenerTimeoutError,
    PortUnavailableError,
)
from oidccli.flow.listener import ListenerState, RedirectListener
from oidccli.flow.ports import LOOPBACK_HOST, PortAllocator


def _get(port: int, path: str) -> tuple[int, str]:
    """Send a GET to the listener and return ``(status, body)``."""
    conn = HTTPConnection(LOOPBACK_HOST, port, timeout=5)
    try:
        conn.request("GET", path)
        response = conn.getresponse()
        return response.status, response.read().decode("utf-8")
    finally:
        conn.close()


@pytest.fixture
def listener() -> RedirectListener:
    redirect_listener = RedirectListener(PortAllocator().allocate())
    redirect_listener.start()
    yield redirect_listener
    redirect_listener.close()


class TestLifecycle:
    def test_starts_idle(self) -> None:
        assert RedirectListener(PortAllocator().allocate()).state is ListenerState.IDLE

    def test_start_listens(self, listener: RedirectListener) -> None:
        assert listener.state is ListenerState.LISTENING

    def test_start_twice_is_rejected(self, listener: RedirectListener) -> None:
        with pytest.raises(RuntimeError):
            listener.start()

    def test_close_releases_port(self) -> None:
        port = PortAllocator().allocate()
        redirect_listener = RedirectListener(port)
        redirect_listener.start()
        redirect_listener.close()

        assert redirect_listener.state is ListenerState.CLOSED
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind((LOOPBACK_HOST, port))

    def test_close_is_idempotent(self, listener: RedirectListener) -> None:
        listener.close()
        listener.close()
        assert listener.state is ListenerState.CLOSED

    def test_context_manager_starts_and_closes(self) -> None:
        with RedirectListener(PortAllocator().allocate()) as redirect_listener:
            assert redirect_listener.state is ListenerState.LISTENING
        assert redirect_listener.state is ListenerState.CLOSED

    def test_port_in_use(self) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind((LOOPBACK_HOST, 0))
            s.listen(1)
            busy_port = s.getsockname()[1]

            with pytest.raises(PortUnavailableError):
                RedirectListener(busy_port).start()


class TestCapture:
    def test_captures_code_and_state(self, listener: RedirectListener) -> None:
        status, body = _get(listener.port, "/?code=abc&state=xyz")
        result = listener.wait(timeout=5)

        assert status == 200
        assert "Sign-in complete" in body
        assert result.authorization_code == "abc"
        assert result.received_state == "xyz"
        assert result.raw_query == {"code": "abc", "state": "xyz"}
        assert listener.state is ListenerState.CAPTURED

    def test_error_redirect_is_captured(self, listener: RedirectListener) -> None:
        status, body = _get(
            listener.port,
            "/?error=access_denied&error_description=User+cancelled&state=xyz",
        )
        result = listener.wait(timeout=5)

        assert status == 200
        assert "Sign-in failed" in body
        assert "User cancelled" in body
        assert result.is_error
        assert result.error == "access_denied"
        assert result.error_description == "User cancelled"

    def test_error_description_is_escaped(self, listener: RedirectListener) -> None:
        _, body = _get(listener.port, "/?error=bad&error_description=%3Cscript%3E")
        listener.wait(timeout=5)
        assert "<script>" not in body
        assert "&lt;script&gt;" in body

    def test_second_request_gets_gone(self, listener: RedirectListener) -> None:
        _get(listener.port, "/?code=first&state=s")
        status, body = _get(listener.port, "/?code=second&state=s")
        result = listener.wait(timeout=5)

        assert status == 410
        assert "already" in body
        assert result.authorization_code == "first"

    def test_other_path_is_not_found(self, listener: RedirectListener) -> None:
        status, _ = _get(listener.port, "/favicon.ico")
        assert status == 404

        status, _ = _get(listener.port, "/?code=abc&state=s")
        assert status == 200
        assert listener.wait(timeout=5).authorization_code == "abc"

    def test_unparseable_target_gets_bad_request(self, listener: RedirectListener) -> None:
        status, _ = _get(listener.port, "x://[y/?code=abc")
        assert status == 400

        status, _ = _get(listener.port, "/?code=abc&state=s")
        assert status == 200
        assert listener.wait(timeout=5).authorization_code == "abc"

    def test_custom_path(self) -> None:
        with RedirectListener(PortAllocator().allocate(), path="/callback") as redirect_listener:
            assert _get(redirect_listener.port, "/?code=abc")[0] == 404
            assert _get(redirect_listener.port, "/callback?code=abc")[0] == 200
            assert redirect_listener.wait(timeout=5).authorization_code == "abc"

    def test_concurrent_requests_single_winner(self, listener: RedirectListener) -> None:
        statuses: list[int] = []
        lock = threading.Lock()

        def hit(n: int) -> None:
            status, _ = _get(listener.port, f"/?code=c{n}&state=s")
            with lock:
                statuses.append(status)

        threads = [threading.Thread(target=hit, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        result = listener.wait(timeout=5)
        assert sorted(statuses) == [200] + [410] * 7
        assert result.authorization_code in {f"c{n}" for n in range(8)}

    def test_response_headers(self, listener: RedirectListener) -> None:
        conn = HTTPConnection(LOOPBACK_HOST, listener.port, timeout=5)
        try:
            conn.request("GET", "/?code=abc&state=s")
            response = conn.getresponse()
            response.read()
            assert response.getheader("Content-Type") == "text/html; charset=utf-8"
            assert response.getheader("Cache-Control") == "no-store"
        finally:
            conn.close()


class TestDispatch:
    def test_winner_then_gone(self) -> None:
        redirect_listener = RedirectListener(0)

        status, _, result = redirect_listener.dispatch("/?code=abc&state=s")
        assert status == 200
        assert result is not None and result.authorization_code == "abc"

        status, _, result = redirect_listener.dispatch("/?code=def&state=s")
        assert status == 410
        assert result is None

    def test_wrong_path_leaves_latch(self) -> None:
        redirect_listener = RedirectListener(0)

        status, _, result = redirect_listener.dispatch("/other?code=abc")
        assert status == 404
        assert result is None

        status, _, result = redirect_listener.dispatch("/?code=abc")
        assert status == 200

    def test_unparseable_target_is_bad_request(self) -> None:
        redirect_listener = RedirectListener(0)

        status, _, result = redirect_listener.dispatch("//[x")
        assert status == 400
        assert result is None

        status, _, result = redirect_listener.dispatch("/?code=abc")
        assert status == 200

    def test_repeated_keys_keep_first_value(self) -> None:
        _, _, result = RedirectListener(0).dispatch("/?code=one&code=two")
        assert result is not None
        assert result.authorization_code == "one"


class TestTimeoutAndCancel:
    def test_timeout(self, listener: RedirectListener) -> None:
        with pytest.raises(ListenerTimeoutError) as exc_info:
            listener.wait(timeout=0.2)

        assert listener.state is ListenerState.TIMED_OUT
        assert "0.2 seconds" in exc_info.value.message

    def test_timeout_measured_from_start(self) -> None:
        now = [100.0]
        redirect_listener = RedirectListener(
            PortAllocator().allocate(), clock=lambda: now[0]
        )
        redirect_listener.start()
        try:
            now[0] = 161.0
            with pytest.raises(ListenerTimeoutError):
                redirect_listener.wait(timeout=60)
        finally:
            redirect_listener.close()

    def test_late_request_after_timeout_is_gone(self, listener: RedirectListener) -> None:
        with pytest.raises(ListenerTimeoutError):
            listener.wait(timeout=0.1)

        status, _ = _get(listener.port, "/?code=late&state=s")
        assert status == 410

    def test_port_released_after_timeout(self) -> None:
        port = PortAllocator().allocate()
        with pytest.raises(ListenerTimeoutError):
            with RedirectListener(port) as redirect_listener:
                redirect_listener.wait(timeout=0.1)

        with RedirectListener(port) as again:
            assert again.state is ListenerState.LISTENING

    def test_cancel_already_set(self, listener: RedirectListener) -> None:
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(ListenerCancelledError):
            listener.wait(timeout=5, cancel=cancel)
        assert listener.state is ListenerState.CANCELLED

    def test_cancel_while_waiting(self, listener: RedirectListener) -> None:
        cancel = threading.Event()
        timer = threading.Timer(0.2, cancel.set)
        timer.start()
        try:
            with pytest.raises(ListenerCancelledError):
                listener.wait(timeout=30, cancel=cancel)
        finally:
            timer.cancel()

    def test_captured_result_wins_over_cancel(self, listener: RedirectListener) -> None:
        _get(listener.port, "/?code=abc&state=s")
        cancel = threading.Event()
        cancel.set()

        assert listener.wait(timeout=5, cancel=cancel).authorization_code == "abc"
