"""Commit API — the operator's half of a commitment.

A requester asks for a signed commitment with their address and the hash
of their secret. The operator draws a fresh secret, signs the resulting
commit id, keeps the secret in the cache until the signature expires and
answers with the ticket the requester submits to the registry.

Routes (registered on an existing aiohttp app):
  GET /commit?address=<owner>&hash=<keccak(user_seed)>
      200 {commit_id, seed_hash, signature, expiration}
      400 {error} for a bad address or a hash that is not 32-byte hex
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from aiohttp import web
from eth_account import Account
from eth_utils import is_address

from vrf_node.crypto import compute_commit_id, hash_seed, is_bytes32, random_seed_hex, sign_hash
from vrf_node.models import CommitTicket
from vrf_node.storage.secret_cache import SecretCache

logger = logging.getLogger(__name__)


class OperatorService:
    """Issues signed commit tickets and remembers the operator seeds."""

    def __init__(
        self,
        private_key: str,
        cache: SecretCache,
        expiration: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if expiration <= 0:
            raise ValueError("You must set a valid expiration time (in seconds).")
        self._private_key = private_key
        self.address: str = Account.from_key(private_key).address
        self.cache = cache
        self.expiration = expiration
        self._clock = clock

    def prepare_commit(self, owner: str, user_seed_hash: str) -> CommitTicket:
        """Draw an operator seed and sign the commit id for *owner*."""
        operator_seed = random_seed_hex()
        operator_seed_hash = hash_seed(operator_seed)
        expiration = int(self._clock()) + self.expiration

        commit_id = compute_commit_id(user_seed_hash, operator_seed_hash, owner, expiration)
        signature = sign_hash(commit_id, self._private_key)

        self.cache.set(commit_id, operator_seed, ttl=self.expiration)
        logger.info("Commit ticket %s issued for %s", commit_id[:12], owner[:12])

        return CommitTicket(
            commit_id=commit_id,
            seed_hash=operator_seed_hash,
            signature=signature,
            expiration=expiration,
        )


@web.middleware
async def error_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception as e:
        logger.exception("Unhandled error on %s", request.path)
        return web.json_response({"error": str(e) or "Unknown error."}, status=500)


def setup_commit_api(app: web.Application, service: OperatorService) -> None:
    """Register commit routes on *app*."""
    app["_vrf_operator"] = service
    app.router.add_get("/commit", _commit)
    logger.info("Commit API enabled at /commit")


def create_app(service: OperatorService) -> web.Application:
    app = web.Application(middlewares=[error_middleware])
    setup_commit_api(app, service)
    return app


async def _commit(request: web.Request) -> web.Response:
    service: OperatorService = request.app["_vrf_operator"]
    address = request.query.get("address", "")
    user_seed_hash = request.query.get("hash", "")

    if not address or not is_address(address):
        return web.json_response({"error": "The `address` parameter is invalid."}, status=400)
    if not is_bytes32(user_seed_hash):
        return web.json_response({"error": "The `hash` parameter is invalid."}, status=400)

    ticket = service.prepare_commit(address, user_seed_hash)
    return web.json_response(ticket.model_dump())
