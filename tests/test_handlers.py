import io
import unittest
from unittest import mock

from task_server import handlers
from task_server.http_request import HttpHeaders, HttpRequest
from task_server.http_response import HttpExchange
from task_server.router import Router


class RecordingStream(io.BytesIO):
    def __init__(self):
        super().__init__()
        self.written = b""

    def close(self):
        if not self.closed:
            self.written = self.getvalue()
        super().close()


def make_exchange(method, target, body=b"", headers=None):
    fields = list(headers or [])
    if body:
        fields.append(("Content-Length", str(len(body))))
    request = HttpRequest(
        method=method,
        target=target,
        http_version="HTTP/1.1",
        headers=HttpHeaders(fields),
    )
    stream = RecordingStream()
    return HttpExchange(request, io.BytesIO(body), stream), stream


def split_response(raw):
    head, body = raw.split(b"\r\n\r\n", maxsplit=1)
    lines = head.decode().split("\r\n")
    headers = dict(line.split(": ", maxsplit=1) for line in lines[1:])
    return lines[0], headers, body


class StatusHandlerTests(unittest.TestCase):
    def test_get_reports_alive(self):
        exchange, stream = make_exchange("GET", "/status")
        handlers.handle_status(exchange)

        status_line, _, body = split_response(stream.written)
        self.assertEqual(status_line, "HTTP/1.1 200 OK")
        self.assertEqual(body, b"Server is alive")

    def test_method_is_case_insensitive(self):
        exchange, stream = make_exchange("get", "/status")
        handlers.handle_status(exchange)
        self.assertTrue(exchange.responded)

    def test_post_closes_without_status_line(self):
        exchange, stream = make_exchange("POST", "/status", body=b"1,2")
        handlers.handle_status(exchange)

        self.assertFalse(exchange.responded)
        self.assertTrue(exchange.closed)
        self.assertEqual(stream.written, b"")


class TaskHandlerTests(unittest.TestCase):
    def run_task(self, body=b"", headers=None, method="POST"):
        exchange, stream = make_exchange(method, "/tasks", body=body, headers=headers)
        handlers.handle_task(exchange)
        return exchange, stream

    def test_product(self):
        _, stream = self.run_task(b"2,3,4")
        status_line, headers, body = split_response(stream.written)

        self.assertEqual(status_line, "HTTP/1.1 200 OK")
        self.assertEqual(body, b"Result of the multiplication is 24\n")
        self.assertEqual(headers["Content-Length"], str(len(body)))
        self.assertNotIn("X-Debug-Info", headers)

    def test_negative_product(self):
        _, stream = self.run_task(b"-5,10")
        self.assertEqual(split_response(stream.written)[2], b"Result of the multiplication is -50\n")

    def test_whitespace_matches_trimmed_input(self):
        _, spaced = self.run_task(b" 2 , 3 ")
        _, plain = self.run_task(b"2,3")
        self.assertEqual(split_response(spaced.written)[2], split_response(plain.written)[2])

    def test_get_closes_without_status_line(self):
        exchange, stream = self.run_task(b"2,3", method="GET")
        self.assertFalse(exchange.responded)
        self.assertEqual(stream.written, b"")

    def test_test_header_bypasses_parser(self):
        with mock.patch.object(handlers, "calculate_response") as calculate:
            _, stream = self.run_task(b"", headers=[("x-test", "TRUE")])

        calculate.assert_not_called()
        status_line, _, body = split_response(stream.written)
        self.assertEqual(status_line, "HTTP/1.1 200 OK")
        self.assertEqual(body, b"123\n")

    def test_test_header_uses_first_value(self):
        _, stream = self.run_task(b"2,3", headers=[("X-Test", "false"), ("X-Test", "true")])
        self.assertEqual(split_response(stream.written)[2], b"Result of the multiplication is 6\n")

    def test_test_header_other_value_computes(self):
        _, stream = self.run_task(b"2,3", headers=[("X-Test", "yes")])
        self.assertEqual(split_response(stream.written)[2], b"Result of the multiplication is 6\n")

    def test_debug_header_reports_timing(self):
        _, stream = self.run_task(b"2,3", headers=[("X-Debug", "true")])
        _, headers, body = split_response(stream.written)

        self.assertEqual(body, b"Result of the multiplication is 6\n")
        self.assertRegex(headers["X-Debug-Info"], r"^Operation took \d+ ns$")

    def test_debug_timing_uses_monotonic_clock(self):
        with mock.patch.object(handlers, "monotonic_ns", side_effect=[1000, 4500]):
            _, stream = self.run_task(b"7", headers=[("X-Debug", "True")])
        self.assertEqual(split_response(stream.written)[1]["X-Debug-Info"], "Operation took 3500 ns")

    def test_debug_timing_covers_body_read(self):
        events = []
        exchange, stream = make_exchange("POST", "/tasks", body=b"2,5", headers=[("X-Debug", "true")])
        original_read = exchange.read_body

        def clock():
            events.append("clock")
            return 100 * len(events)

        def read_body():
            events.append("read")
            return original_read()

        with mock.patch.object(handlers, "monotonic_ns", side_effect=clock), \
                mock.patch.object(exchange, "read_body", side_effect=read_body):
            handlers.handle_task(exchange)

        self.assertEqual(events, ["clock", "read", "clock"])
        _, headers, body = split_response(stream.written)
        self.assertEqual(body, b"Result of the multiplication is 10\n")
        self.assertEqual(headers["X-Debug-Info"], "Operation took 200 ns")

    def test_wrong_method_leaves_body_unread(self):
        exchange, _ = make_exchange("GET", "/tasks", body=b"2,3")
        with mock.patch.object(exchange, "read_body") as read_body:
            handlers.handle_task(exchange)
        read_body.assert_not_called()

    def test_test_header_leaves_body_unread(self):
        exchange, stream = make_exchange("POST", "/tasks", body=b"2,,3", headers=[("X-Test", "true")])
        with mock.patch.object(exchange, "read_body") as read_body:
            handlers.handle_task(exchange)
        read_body.assert_not_called()
        self.assertEqual(split_response(stream.written)[2], b"123\n")

    def test_truncated_body_takes_error_path(self):
        request = HttpRequest(
            method="POST",
            target="/tasks",
            http_version="HTTP/1.1",
            headers=HttpHeaders([("Content-Length", "10")]),
        )
        stream = RecordingStream()
        exchange = HttpExchange(request, io.BytesIO(b"2,3"), stream)

        with self.assertLogs("task_server.handlers", level="ERROR"):
            handlers.handle_task(exchange)
        self.assertEqual(split_response(stream.written)[2], b"Internal Server Error")

    def test_empty_segment_takes_error_path(self):
        with self.assertLogs("task_server.handlers", level="ERROR"):
            _, stream = self.run_task(b"2,,3")

        status_line, _, body = split_response(stream.written)
        self.assertEqual(status_line, f"HTTP/1.1 {handlers.ERROR_STATUS_CODE} OK")
        self.assertEqual(body, b"Internal Server Error")

    def test_error_status_code_is_200(self):
        self.assertEqual(handlers.ERROR_STATUS_CODE, 200)

    def test_empty_body_takes_error_path(self):
        with self.assertLogs("task_server.handlers", level="ERROR"):
            _, stream = self.run_task(b"")
        self.assertEqual(split_response(stream.written)[2], b"Internal Server Error")

    def test_malformed_number_takes_error_path(self):
        with self.assertLogs("task_server.handlers", level="ERROR"):
            _, stream = self.run_task(b"2,x")
        self.assertEqual(split_response(stream.written)[2], b"Internal Server Error")

    def test_error_path_has_no_debug_header(self):
        with self.assertLogs("task_server.handlers", level="ERROR"):
            _, stream = self.run_task(b"2,,3", headers=[("X-Debug", "true")])
        self.assertNotIn("X-Debug-Info", split_response(stream.written)[1])

    def test_failure_after_response_is_only_logged(self):
        exchange, stream = make_exchange("POST", "/tasks", body=b"2")
        original = exchange.send_response

        def send_then_fail(body, status_code=200):
            original(body, status_code)
            raise BrokenPipeError()

        with mock.patch.object(exchange, "send_response", side_effect=send_then_fail):
            with self.assertLogs("task_server.handlers", level="ERROR"):
                handlers.handle_task(exchange)

        self.assertEqual(split_response(stream.written)[2], b"Result of the multiplication is 2\n")

    def test_repeated_requests_are_idempotent(self):
        bodies = {split_response(self.run_task(b"3,-4,5")[1].written)[2] for _ in range(5)}
        self.assertEqual(bodies, {b"Result of the multiplication is -60\n"})


class RouterTests(unittest.TestCase):
    def test_build_router_registers_both_endpoints(self):
        router = handlers.build_router()
        self.assertIsNone(router.resolve("/"))
        self.assertIs(router.resolve("/tasks"), handlers.handle_task)
        self.assertIs(router.resolve("/status"), handlers.handle_status)

    def test_dispatch_matches_path_without_query(self):
        handler = mock.Mock()
        router = Router()
        router.register("/status", handler)
        exchange, _ = make_exchange("GET", "/status?x=1")

        self.assertTrue(router.dispatch(exchange))
        handler.assert_called_once_with(exchange)

    def test_unknown_path_runs_no_handler(self):
        router = handlers.build_router()
        for target in ("/", "/other", "/tasks/1", "/statusx"):
            with self.subTest(target=target):
                exchange, stream = make_exchange("GET", target)
                self.assertFalse(router.dispatch(exchange))
                self.assertFalse(exchange.responded)

    def test_duplicate_registration(self):
        router = Router()
        router.register("/tasks", mock.Mock())
        with self.assertRaises(ValueError):
            router.register("/tasks", mock.Mock())


if __name__ == "__main__":
    unittest.main()
