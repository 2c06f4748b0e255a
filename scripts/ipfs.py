#!/usr/bin/env python3
"""
NFT Market Client — IPFS pinning

Uploads a local file to Pinata and returns its gateway URL.
"""

import json
import logging
from pathlib import Path
from typing import Optional

import requests

from common import DEFAULT_IPFS_GATEWAY, ERROR_MESSAGES, PINATA_PIN_FILE_URL
from utils import create_http_session, get_pinata_jwt, load_config

logger = logging.getLogger(__name__)


def upload_to_ipfs(
    path: str,
    jwt: Optional[str] = None,
    gateway: Optional[str] = None,
    session: Optional[requests.Session] = None,
    timeout: int = 60,
) -> dict:
    """
    Pin a file on IPFS via Pinata.

    Args:
        path: Local file path
        jwt: Pinata JWT (defaults to config / PINATA_JWT env)
        gateway: Gateway prefix for the returned URL
        session: HTTP session to reuse

    Returns:
        dict with keys: success, ipfs_hash, url / error
    """
    file_path = Path(path).expanduser()
    if not file_path.is_file():
        return {"success": False, "error": f"File not found: {path}"}

    jwt = jwt or get_pinata_jwt()
    if not jwt:
        return {"success": False, "error": ERROR_MESSAGES["missing_pinata"]}

    gateway = gateway or load_config().get("ipfs_gateway") or DEFAULT_IPFS_GATEWAY
    session = session or create_http_session(timeout=timeout)

    try:
        with open(file_path, "rb") as fh:
            response = session.post(
                PINATA_PIN_FILE_URL,
                headers={"Authorization": f"Bearer {jwt}"},
                files={"file": (file_path.name, fh)},
                data={
                    "pinataMetadata": json.dumps({"name": file_path.name}),
                    "pinataOptions": json.dumps({"cidVersion": 0}),
                },
                timeout=timeout,
            )
    except requests.exceptions.RequestException as e:
        logger.error("IPFS upload of %s failed: %s", file_path.name, e)
        return {"success": False, "error": f"Upload failed: {e}"}

    if not response.ok:
        logger.error("IPFS upload of %s failed: HTTP %s", file_path.name, response.status_code)
        return {
            "success": False,
            "error": f"Upload failed: HTTP {response.status_code}",
            "status_code": response.status_code,
        }

    try:
        ipfs_hash = response.json()["IpfsHash"]
    except (ValueError, KeyError, TypeError):
        return {"success": False, "error": "Unexpected pinning response"}

    url = gateway.rstrip("/") + "/" + ipfs_hash
    logger.info("Pinned %s as %s", file_path.name, ipfs_hash)
    return {"success": True, "ipfs_hash": ipfs_hash, "url": url}
