#!/usr/bin/env python3
"""inferproof command line — attest, verify and share AI inference exchanges.

Usage:
  # Local attestation API (ledger + share store) for development
  python3 run_attest.py serve --port 8390 --db ./attest.db

  # Encrypted chat with NEAR AI Cloud, attested, notarized and shared
  NEAR_AI_API_KEY=... python3 run_attest.py chat "What is a TEE?" --model deepseek-ai/DeepSeek-V3.1

  # Re-verify a saved receipt
  python3 run_attest.py verify receipt.json

  # Open a share and cite part of it
  python3 run_attest.py unshare <id> word1-word2-...
  python3 run_attest.py ref-resolve <id>:1:0-42 --passphrase word1-word2-...
"""
import argparse
import asyncio
import json
import logging
import os
import signal
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from inferproof.config import InferproofConfig
from inferproof.crypto.keys import generate_passphrase
from inferproof.e2ee.model_keys import ModelPublicKeys
from inferproof.e2ee.session import open_session
from inferproof.e2ee.transport import AiohttpTransport
from inferproof.errors import InferproofError
from inferproof.protocol import Receipt
from inferproof.receipts.attest import attest
from inferproof.receipts.attestation import NearAIAttestationChecker
from inferproof.receipts.ledger import HttpLedger, NearLedger, SqliteLedger
from inferproof.receipts.signer import NearAISigner
from inferproof.receipts.verify import verify
from inferproof.server.http_server import AttestationApiServer
from inferproof.share.bundle import share, share_url, unshare
from inferproof.share.reference import conversation_messages, encode_reference, resolve_reference
from inferproof.share.store import HttpBlobStore, ShareCache, SqliteBlobStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("inferproof")


def _ledger(config: InferproofConfig):
    if config.contract_id:
        return NearLedger(config.contract_id, rpc_url=config.near_rpc_url, api_url=config.share_api_url)
    return HttpLedger(config.share_api_url, timeout=config.request_timeout)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


# ── Commands ────────────────────────────────────────────────────────

async def cmd_serve(args, config: InferproofConfig) -> int:
    ledger = SqliteLedger(args.db)
    blobs = SqliteBlobStore(args.db)
    server = AttestationApiServer(ledger, blobs, host=args.host, port=args.port)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await server.start()
    logger.info(f"SERVING | {server.url} db={args.db}")
    await stop.wait()
    await server.stop()
    ledger.close()
    blobs.close()
    logger.info("STOPPED")
    return 0


async def cmd_chat(args, config: InferproofConfig) -> int:
    if not config.near_ai_api_key:
        logger.error("NEAR_AI_API_KEY is not set")
        return 2

    public_key, address = await ModelPublicKeys(config.near_ai_base_url).get(args.model)
    logger.info(f"Model {args.model} signs as {address}")

    transport = AiohttpTransport(timeout=config.request_timeout, api_key=config.near_ai_api_key)
    session = open_session(public_key, transport, model=args.model)
    body = {
        "model": args.model,
        "messages": [{"role": "user", "content": args.prompt}],
        "stream": True,
    }
    try:
        response = await session.send(f"{config.near_ai_base_url}/chat/completions", body)
        async for chunk in response:
            logger.debug(chunk.decode("utf-8", errors="replace"))
        capture = await session.await_capture()
    finally:
        await transport.close()
    if capture is None:
        logger.error("Exchange was not captured; no receipt")
        return 1

    chat_data = session.chat_data(capture)
    print(chat_data.output)

    signer = NearAISigner(config.near_ai_api_key, base_url=config.near_ai_base_url)
    receipt = await attest(
        capture, signer, _ledger(config),
        output=chat_data.output, model=args.model, prompt=args.prompt,
    )
    if args.out:
        with open(args.out, "w") as f:
            f.write(receipt.model_dump_json(indent=2))
        logger.info(f"Receipt saved to {args.out}")

    if args.share:
        cache = ShareCache(config.cache_path)
        share_id, passphrase = await share(
            chat_data, receipt, HttpBlobStore(config.share_api_url), cache,
            num_words=config.passphrase_words,
        )
        cache.close()
        print(share_url(config.share_api_url, share_id, passphrase))
    return 0


async def cmd_verify(args, config: InferproofConfig) -> int:
    with open(args.receipt) as f:
        receipt = Receipt.model_validate_json(f.read())
    checker = None
    if not args.skip_hardware:
        checker = NearAIAttestationChecker(
            config.near_ai_base_url, config.nras_base_url, config.quote_verify_url,
            timeout=config.request_timeout,
        )
    result = await verify(
        receipt, _ledger(config), checker,
        timeout=config.check_timeout, max_concurrency=config.max_concurrent_checks,
    )
    _print_json(result.model_dump())
    return 0 if result.valid else 1


async def cmd_unshare(args, config: InferproofConfig) -> int:
    payload = await unshare(args.id, args.passphrase.split("-"), HttpBlobStore(config.share_api_url))
    messages = conversation_messages(payload.chat_data)
    for index, message in enumerate(messages):
        print(f"[{index}] {message['role']}: {message['content']}")
    _print_json(payload.receipt.model_dump())
    return 0


async def cmd_ref_encode(args, config: InferproofConfig) -> int:
    print(encode_reference(args.id, args.message, args.start, args.end))
    return 0


async def cmd_ref_resolve(args, config: InferproofConfig) -> int:
    share_id = args.reference.split(":", 1)[0]
    payload = await unshare(share_id, args.passphrase.split("-"), HttpBlobStore(config.share_api_url))
    resolved = resolve_reference(args.reference, payload, share_id)
    _print_json(resolved.model_dump())
    return 0


async def cmd_passphrase(args, config: InferproofConfig) -> int:
    print("-".join(generate_passphrase(args.words)))
    return 0


# ── Entry point ─────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="inferproof — verifiable AI inference receipts")
    parser.add_argument("--api", type=str, default=None, help="Attestation/share API URL")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("serve", help="Run a local attestation API")
    p.add_argument("--host", type=str, default="0.0.0.0")
    p.add_argument("--port", type=int, default=8390, help="Port (default: 8390)")
    p.add_argument("--db", type=str, default="attest.db", help="SQLite database path")
    p.set_defaults(func=cmd_serve)

    p = sub.add_parser("chat", help="Encrypted, attested chat completion")
    p.add_argument("prompt", type=str)
    p.add_argument("--model", type=str, default="deepseek-ai/DeepSeek-V3.1")
    p.add_argument("--out", type=str, default=None, help="Write the receipt to this file")
    p.add_argument("--share", action="store_true", help="Upload a share bundle and print its link")
    p.set_defaults(func=cmd_chat)

    p = sub.add_parser("verify", help="Verify a receipt file")
    p.add_argument("receipt", type=str)
    p.add_argument("--skip-hardware", action="store_true", help="Skip GPU/TDX/compose checks")
    p.set_defaults(func=cmd_verify)

    p = sub.add_parser("unshare", help="Open a share")
    p.add_argument("id", type=str)
    p.add_argument("passphrase", type=str, help="Words joined by '-'")
    p.set_defaults(func=cmd_unshare)

    p = sub.add_parser("ref-encode", help="Build a compact reference")
    p.add_argument("id", type=str)
    p.add_argument("message", type=int)
    p.add_argument("start", type=int)
    p.add_argument("end", type=int)
    p.set_defaults(func=cmd_ref_encode)

    p = sub.add_parser("ref-resolve", help="Resolve a compact reference against its share")
    p.add_argument("reference", type=str)
    p.add_argument("--passphrase", type=str, required=True)
    p.set_defaults(func=cmd_ref_resolve)

    p = sub.add_parser("passphrase", help="Generate a passphrase")
    p.add_argument("--words", type=int, default=6)
    p.set_defaults(func=cmd_passphrase)
    return parser


async def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    config = InferproofConfig.from_env()
    if args.api:
        config = config.model_copy(update={"share_api_url": args.api})
    try:
        return await args.func(args, config)
    except InferproofError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1


def cli():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
