"""HTTP front end: greeting, health endpoint and health toggles."""

import threading
import urllib.parse
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from .config import SharedConfig

GREETINGS = {
    "french": "Bonjour Monde",
    "portuguese": "Olá Mundo",
    "spanish": "Hola Mundo",
}
DEFAULT_GREETING = "Hello World"


def greeting(language: str) -> str:
    """Return the greeting for *language*, English for anything unknown."""
    return GREETINGS.get(language, DEFAULT_GREETING)


def _make_handler(shared: SharedConfig):
    """Create a handler class bound to the given SharedConfig instance."""

    class HelloHTTPHandler(BaseHTTPRequestHandler):

        def log_message(self, format, *args):
            # Silence default stderr logging
            pass

        def _text_response(self, text: str, status: int = 200):
            body = f"{text}\n".encode() if text else b""
            self.send_response(status)
            self.send_header("Content-Type", "text/plain; charset=utf-8")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def _path(self) -> str:
            return urllib.parse.urlparse(self.path).path

        def do_GET(self):
            path = self._path()
            if path == "/hello":
                self._text_response(greeting(shared.language))
            elif path == "/healthz":
                if not shared.checks_enabled:
                    self._text_response("", status=410)
                    return
                self._text_response("I'm alive")
            elif path in ("/health/pass", "/health/fail"):
                self._text_response("method not allowed", status=405)
            else:
                self._text_response("404 page not found", status=404)

        def do_PUT(self):
            path = self._path()
            if path == "/health/pass":
                shared.set_checks_enabled(True)
                self._text_response("Health endpoint enabled.")
            elif path == "/health/fail":
                shared.set_checks_enabled(False)
                self._text_response("Health endpoint disabled.")
            elif path in ("/hello", "/healthz"):
                self._text_response("method not allowed", status=405)
            else:
                self._text_response("404 page not found", status=404)

    return HelloHTTPHandler


def make_server(shared: SharedConfig, host: str = "localhost", port: int = 8080) -> ThreadingHTTPServer:
    """Bind the HTTP server without starting it."""
    return ThreadingHTTPServer((host, port), _make_handler(shared))


def start_server(shared: SharedConfig, host: str = "localhost", port: int = 8080) -> ThreadingHTTPServer:
    """Start a ThreadingHTTPServer in a daemon thread and return the server."""
    server = make_server(shared, host, port)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return server
