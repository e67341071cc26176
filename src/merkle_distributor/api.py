"""
merkle_distributor/api.py

REST API server for merkle_distributor.

Exposes the ledger's read operations, the public claim and deposit
operations, the published proof for an account, and Prometheus metrics.
Owner and maintainer operations are not served over HTTP.
"""

import json
import logging
import time
import trio
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple
from dataclasses import dataclass, field
from urllib.parse import parse_qs, urlparse

from .config import VERSION
from .identity.address import InvalidAddressError, normalize_address
from .metrics import DistributorMetrics
from .protocol.balance_map import BalanceMapError, parse_amount
from .protocol.distributor import DistributorError
from .protocol.storage import StorageError

if TYPE_CHECKING:
    from .protocol.balance_map import MerkleDistributorInfo
    from .protocol.distributor import MerkleDistributor
    from .protocol.storage import LedgerStore

logger = logging.getLogger("merkle_distributor.api")


@dataclass
class Request:
    """HTTP request representation."""
    method: str
    path: str
    query: Dict[str, List[str]]
    headers: Dict[str, str]
    body: bytes
    path_params: Dict[str, str] = field(default_factory=dict)


@dataclass
class Response:
    """HTTP response representation."""
    status: int
    headers: Dict[str, str]
    body: bytes

    @classmethod
    def json(cls, data: Any, status: int = 200) -> "Response":
        """Create JSON response."""
        body = json.dumps(data, indent=2).encode("utf-8")
        return cls(
            status=status,
            headers={"Content-Type": "application/json"},
            body=body,
        )

    @classmethod
    def text(cls, text: str, status: int = 200, content_type: str = "text/plain") -> "Response":
        """Create text response."""
        return cls(
            status=status,
            headers={"Content-Type": content_type},
            body=text.encode("utf-8"),
        )

    @classmethod
    def error(cls, message: str, status: int = 400) -> "Response":
        """Create error response."""
        return cls.json({"error": message}, status=status)


class DistributorAPI:
    """
    REST API server for a MerkleDistributor.

    Usage:
        from merkle_distributor.api import DistributorAPI

        api = DistributorAPI(distributor, store=store, distribution=info)
        trio.run(api.start)

        # API available at http://localhost:8080
    """

    def __init__(
        self,
        distributor: "MerkleDistributor",
        host: str = "127.0.0.1",
        port: int = 8080,
        store: Optional["LedgerStore"] = None,
        distribution: Optional["MerkleDistributorInfo"] = None,
        enable_metrics: bool = True,
    ):
        """
        Initialize REST API server.

        Args:
            distributor: Ledger to expose
            host: Host to bind to (default: localhost)
            port: Port to listen on (default: 8080)
            store: If given, state is saved after every successful mutation
            distribution: Published distribution used to serve proofs
            enable_metrics: Enable Prometheus metrics endpoint
        """
        self.distributor = distributor
        self.host = host
        self.port = port
        self.store = store
        self.distribution = distribution
        self.enable_metrics = enable_metrics

        self.metrics = DistributorMetrics(distributor) if enable_metrics else None

        # Server state
        self._running = False
        self._start_time = time.time()

        # Route handlers
        self._routes: Dict[Tuple[str, str], Callable] = {
            ("GET", "/"): self._handle_root,
            ("GET", "/health"): self._handle_health,
            ("GET", "/status"): self._handle_status,
            ("GET", "/merkle-root"): self._handle_merkle_root,
            ("GET", "/claimed/{account}"): self._handle_claimed,
            ("GET", "/proof/{account}"): self._handle_proof,
            ("POST", "/claim"): self._handle_claim,
            ("POST", "/deposit"): self._handle_deposit,
            ("GET", "/metrics"): self._handle_metrics,
        }

    async def start(self) -> None:
        """Start the API server."""
        if self._running:
            logger.warning("API server already running")
            return

        self._running = True
        logger.info(f"Starting REST API server on {self.host}:{self.port}")

        try:
            await trio.serve_tcp(
                self._handle_connection,
                self.port,
                host=self.host,
            )
        except Exception as e:
            logger.error(f"API server error: {e}")
            self._running = False
            raise

    async def stop(self) -> None:
        """Stop the API server."""
        self._running = False
        logger.info("REST API server stopped")

    async def _handle_connection(self, stream: trio.SocketStream) -> None:
        """Handle incoming TCP connection."""
        try:
            request = await self._read_request(stream)
            if not request:
                return

            response = await self._route_request(request)
            await self._send_response(stream, response)

        except Exception as e:
            logger.error(f"Connection error: {e}")
            try:
                await self._send_response(stream, Response.error(str(e), status=500))
            except trio.BrokenResourceError:
                pass
        finally:
            await stream.aclose()

    async def _read_request(self, stream: trio.SocketStream) -> Optional[Request]:
        """Read and parse HTTP request."""
        try:
            data = b""
            while b"\r\n\r\n" not in data:
                chunk = await stream.receive_some(4096)
                if not chunk:
                    return None
                data += chunk

            header_end = data.index(b"\r\n\r\n")
            header_data = data[:header_end].decode("utf-8")
            body = data[header_end + 4:]

            lines = header_data.split("\r\n")
            request_line = lines[0].split(" ")
            method = request_line[0]
            path_with_query = request_line[1] if len(request_line) > 1 else "/"

            parsed = urlparse(path_with_query)

            headers = {}
            for line in lines[1:]:
                if ":" in line:
                    key, value = line.split(":", 1)
                    headers[key.strip().lower()] = value.strip()

            content_length = int(headers.get("content-length", 0))
            while len(body) < content_length:
                chunk = await stream.receive_some(4096)
                if not chunk:
                    break
                body += chunk

            return Request(
                method=method,
                path=parsed.path,
                query=parse_qs(parsed.query),
                headers=headers,
                body=body[:content_length] if content_length else body,
            )

        except (UnicodeDecodeError, ValueError, trio.BrokenResourceError) as e:
            logger.error(f"Error reading request: {e}")
            return None

    async def _send_response(self, stream: trio.SocketStream, response: Response) -> None:
        """Send HTTP response."""
        status_text = {
            200: "OK",
            201: "Created",
            400: "Bad Request",
            404: "Not Found",
            500: "Internal Server Error",
            503: "Service Unavailable",
        }.get(response.status, "Unknown")

        lines = [f"HTTP/1.1 {response.status} {status_text}"]

        response.headers["Content-Length"] = str(len(response.body))
        response.headers["Connection"] = "close"
        response.headers["Server"] = f"merkle-distributor/{VERSION}"

        for key, value in response.headers.items():
            lines.append(f"{key}: {value}")

        lines.append("")
        header_bytes = "\r\n".join(lines).encode("utf-8") + b"\r\n"

        await stream.send_all(header_bytes + response.body)

    async def _route_request(self, request: Request) -> Response:
        """Route request to appropriate handler."""
        handler = self._routes.get((request.method, request.path))
        if handler:
            return await handler(request)

        for (method, pattern), handler in self._routes.items():
            if method != request.method:
                continue

            match, params = self._match_path(pattern, request.path)
            if match:
                request.path_params = params
                return await handler(request)

        return Response.error("Not Found", status=404)

    def _match_path(self, pattern: str, path: str) -> Tuple[bool, Dict[str, str]]:
        """Match path against pattern with parameters."""
        pattern_parts = pattern.split("/")
        path_parts = path.split("/")

        if len(pattern_parts) != len(path_parts):
            return False, {}

        params = {}
        for p_part, path_part in zip(pattern_parts, path_parts):
            if p_part.startswith("{") and p_part.endswith("}"):
                params[p_part[1:-1]] = path_part
            elif p_part != path_part:
                return False, {}

        return True, params

    def _parse_body(self, request: Request) -> Dict[str, Any]:
        """Decode a JSON object body; raises ValueError if absent or invalid."""
        if not request.body:
            raise ValueError("Request body required")
        try:
            body = json.loads(request.body)
        except json.JSONDecodeError:
            raise ValueError("Invalid JSON")
        if not isinstance(body, dict):
            raise ValueError("JSON object required")
        return body

    def _persist(self, operation: str) -> Optional[Response]:
        """Save the ledger; returns a 500 response if the store fails."""
        if self.store is None:
            return None
        try:
            self.store.save(self.distributor)
        except StorageError as e:
            logger.error(f"{operation} applied in memory but not persisted: {e}")
            return Response.error(f"{operation} applied but not persisted: {e}", status=500)
        return None

    def _rejected(self, error: DistributorError) -> Response:
        if self.metrics:
            self.metrics.record_rejection(error)
        return Response.error(str(error), status=400)

    # ========== Route Handlers ==========

    async def _handle_root(self, request: Request) -> Response:
        """Handle root endpoint."""
        return Response.json({
            "name": "merkle-distributor",
            "version": VERSION,
            "endpoints": list(f"{m} {p}" for (m, p) in self._routes.keys()),
        })

    async def _handle_health(self, request: Request) -> Response:
        """Handle health check."""
        is_healthy = self.distributor.is_initialized
        return Response.json({
            "status": "healthy" if is_healthy else "unhealthy",
            "initialized": is_healthy,
            "uptime_seconds": time.time() - self._start_time,
        }, status=200 if is_healthy else 503)

    async def _handle_status(self, request: Request) -> Response:
        """Handle status endpoint."""
        stats = self.distributor.get_stats()
        # uint256 values go out as decimal strings
        stats["balance"] = str(stats["balance"])
        stats["total_claimed"] = str(stats["total_claimed"])
        stats["distribution_loaded"] = self.distribution is not None
        return Response.json(stats)

    async def _handle_merkle_root(self, request: Request) -> Response:
        return Response.json({
            "merkle_root": self.distributor.merkle_root,
            "maintainer": self.distributor.maintainer,
            "owner": self.distributor.owner,
        })

    async def _handle_claimed(self, request: Request) -> Response:
        """Handle cumulative claimed amount lookup."""
        account = request.path_params.get("account")
        try:
            account = normalize_address(account or "")
        except InvalidAddressError as e:
            return Response.error(str(e), status=400)

        return Response.json({
            "account": account,
            "claimed_amount": str(self.distributor.claimed_amount(account)),
        })

    async def _handle_proof(self, request: Request) -> Response:
        """Serve an account's claim package from the published distribution."""
        if self.distribution is None:
            return Response.error("No distribution loaded", status=404)

        try:
            claim = self.distribution.get_claim(request.path_params.get("account") or "")
        except InvalidAddressError as e:
            return Response.error(str(e), status=400)

        if claim is None:
            return Response.error("Account has no claim in this distribution", status=404)

        data = claim.to_dict()
        data["merkle_root"] = self.distribution.merkle_root
        return Response.json(data)

    async def _handle_claim(self, request: Request) -> Response:
        """
        Handle claim submission.

        Body: {"index", "account", "amount", "proof", "caller" (optional)}
        """
        try:
            body = self._parse_body(request)
            account = normalize_address(body["account"])
            caller = normalize_address(body.get("caller") or account)
            index = int(body["index"])
            amount = parse_amount(body["amount"])
            proof = body["proof"]
            if not isinstance(proof, list):
                raise ValueError("proof must be a list of hashes")
        except KeyError as e:
            return Response.error(f"Missing field: {e.args[0]}", status=400)
        except (ValueError, TypeError, BalanceMapError) as e:
            return Response.error(str(e), status=400)

        try:
            event = self.distributor.claim(caller, index, account, amount, proof)
        except DistributorError as e:
            return self._rejected(e)

        failed = self._persist("Claim")
        if failed is not None:
            return failed
        return Response.json({
            "success": True,
            "index": event.index,
            "account": event.account,
            "amount": str(event.amount),
            "claimed_amount": str(self.distributor.claimed_amount(account)),
        })

    async def _handle_deposit(self, request: Request) -> Response:
        """Handle deposit. Body: {"sender", "amount"}"""
        try:
            body = self._parse_body(request)
            sender = normalize_address(body["sender"])
            amount = parse_amount(body["amount"])
        except KeyError as e:
            return Response.error(f"Missing field: {e.args[0]}", status=400)
        except (ValueError, TypeError, BalanceMapError) as e:
            return Response.error(str(e), status=400)

        try:
            self.distributor.deposit(sender, amount)
        except DistributorError as e:
            return self._rejected(e)
        except ValueError as e:
            return Response.error(str(e), status=400)

        failed = self._persist("Deposit")
        if failed is not None:
            return failed
        return Response.json({
            "success": True,
            "balance": str(self.distributor.balance),
        }, status=201)

    async def _handle_metrics(self, request: Request) -> Response:
        """Handle Prometheus metrics endpoint."""
        if not self.metrics:
            return Response.error("Metrics not enabled", status=404)

        return Response.text(
            self.metrics.collect(),
            content_type="text/plain; version=0.0.4; charset=utf-8",
        )
