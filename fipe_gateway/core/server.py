"""Threaded HTTP server for FIPE Gateway."""

import threading
from http.server import ThreadingHTTPServer

from fipe_gateway.utils.logger import get_logger

logger = get_logger("core.server")


class ThreadedHTTPServer(ThreadingHTTPServer):
    """One thread per request; every handler gets the owning GatewayService."""

    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, server_address, RequestHandlerClass, service):
        self.service = service

        def handler(*args, **kwargs):
            return RequestHandlerClass(*args, service=service, **kwargs)

        super().__init__(server_address, handler)
        self._run_thread = None

    def start(self, blocking=True):
        if blocking:
            logger.info("Serving in blocking mode...")
            self.serve_forever()
            return
        self._run_thread = threading.Thread(target=self.serve_forever, name="fipe-gateway-http", daemon=True)
        self._run_thread.start()
        logger.info(f"Serving in background on {self.server_address[0]}:{self.server_address[1]}")

    def stop(self):
        logger.info("Stopping server...")
        self.shutdown()
        self.server_close()
        if self._run_thread:
            self._run_thread.join()
            self._run_thread = None
        logger.info("Server stopped.")
