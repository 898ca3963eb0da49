"""inferproof Share Test Suite

Tests share()/unshare() against SqliteBlobStore, the share-id cache,
wrong passphrases, unknown ids, share links, an unreachable
share store and concurrent shares of the same chat.
"""
import sys
import os
import asyncio
from urllib.parse import urlparse

from aiohttp import web

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), '..', '..'))

from inferproof.crypto.ecies import decrypt_with_passphrase
from inferproof.errors import DecryptionFailed, InferproofError, InvalidPassphrase, NotFound, StorageUnavailable
from inferproof.protocol import ChatData, WireCapture
from inferproof.receipts.attest import attest
from inferproof.receipts.ledger import HttpLedger
from inferproof.share.bundle import content_hash, parse_share_url, share, share_url, unshare
from inferproof.share.store import HttpBlobStore, ShareCache, SqliteBlobStore
from tests.mock.mock_services import MockLedger, MockSigner

passed = failed = 0


def check(cond, name):
    global passed, failed
    if cond:
        passed += 1
        print(f"    OK {name}")
    else:
        failed += 1
        print(f"    FAIL {name}")
    assert cond, name


def run(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def make_chat():
    capture = WireCapture(
        request_body=b'{"model":"m","messages":[{"role":"user","content":"hi"}]}',
        response_body=b'{"id":"chatcmpl-9","choices":[{"message":{"content":"hello there"}}]}',
        exchange_id="chatcmpl-9",
    )
    receipt = run(attest(capture, MockSigner(), MockLedger(), output="hello there", model="m"))
    return ChatData.from_capture(capture, output="hello there", model="m"), receipt


def raised(coro, exc_type):
    try:
        run(coro)
    except exc_type:
        return True
    return False


# ── 1. Share & unshare ──────────────────────────────────────────────

def test_share_roundtrip():
    print("\n1. Share & unshare...")
    chat, receipt = make_chat()
    store = SqliteBlobStore()
    share_id, passphrase = run(share(chat, receipt, store))

    check(len(passphrase) == 6, "Six-word passphrase")
    check(all(word[-1].isdigit() for word in passphrase), "Each word ends in a digit")
    check(store.count() == 1, "One blob stored")

    binary = store.download_sync(share_id)
    check(b"hello there" not in binary, "Stored blob is ciphertext")
    check("hello there" in decrypt_with_passphrase(binary, passphrase), "Blob opens with the passphrase")

    payload = run(unshare(share_id, passphrase, store))
    check(payload.chat_data == chat, "Chat data restored")
    check(payload.receipt == receipt, "Receipt restored")
    check(payload.timestamp > 0, "Share timestamp set")

    short_id, short = run(share(chat, receipt, store, num_words=3))
    check(len(short) == 3 and short_id != share_id, "Custom word count, new id")


# ── 2. Failures ─────────────────────────────────────────────────────

def test_share_failures():
    print("\n2. Failures...")
    chat, receipt = make_chat()
    store = SqliteBlobStore()
    share_id, passphrase = run(share(chat, receipt, store))

    wrong = list(passphrase)
    wrong[0] = "zebra1" if wrong[0] != "zebra1" else "zebra2"
    check(raised(unshare(share_id, wrong, store), DecryptionFailed), "Wrong passphrase -> DecryptionFailed")
    check(raised(unshare(share_id, passphrase[:-1], store), DecryptionFailed), "Missing word -> DecryptionFailed")
    check(raised(unshare(share_id, [], store), InvalidPassphrase), "Empty passphrase rejected")
    check(raised(unshare("no-such-share", passphrase, store), NotFound), "Unknown id -> NotFound")


# ── 3. Share cache ──────────────────────────────────────────────────

def test_share_cache():
    print("\n3. Share cache...")
    chat, receipt = make_chat()
    store, cache = SqliteBlobStore(), ShareCache()

    first = run(share(chat, receipt, store, cache=cache))
    second = run(share(chat, receipt, store, cache=cache))
    check(first == second, "Same content -> same id and passphrase")
    check(store.count() == 1, "Uploaded once")

    edited = chat.model_copy(update={"output": "something else"})
    third = run(share(edited, receipt, store, cache=cache))
    check(third[0] != first[0] and store.count() == 2, "Different content -> new share")


# ── 4. Share links ──────────────────────────────────────────────────

def test_share_url():
    print("\n4. Share links...")
    url = share_url("https://inferproof.example/share/", "AbC_123", ["orbit7", "lemon2"])
    check(url == "https://inferproof.example/share/?id=AbC_123#passphrase=orbit7-lemon2", "Link format")
    parsed = urlparse(url)
    check("orbit7" not in parsed.query and "orbit7" not in parsed.path, "Passphrase never in the part sent to the server")
    check(parsed.fragment == "passphrase=orbit7-lemon2", "Passphrase carried in the fragment")
    check(parse_share_url(url) == ("AbC_123", ["orbit7", "lemon2"]), "Link parsed back")
    legacy = "https://inferproof.example/share/?id=AbC_123&passphrase=orbit7-lemon2"
    check(parse_share_url(legacy) == ("AbC_123", ["orbit7", "lemon2"]), "Query-string links still parse")

    try:
        parse_share_url("https://inferproof.example/share/?passphrase=a1")
        check(False, "Missing id rejected")
    except ValueError:
        check(True, "Missing id rejected")
    try:
        parse_share_url("https://inferproof.example/share/?id=x")
        check(False, "Missing passphrase rejected")
    except InvalidPassphrase:
        check(True, "Missing passphrase rejected")


# ── 5. Unreachable share store ──────────────────────────────────────

class BrokenShareApi:
    """Share + ledger routes that answer 500, or 200 without an id."""

    def __init__(self):
        self._runner = None
        self._site = None

    async def start(self):
        app = web.Application()
        app.router.add_post("/broken/api/share/store", self._error)
        app.router.add_get("/broken/api/share/{share_id}", self._error)
        app.router.add_get("/broken/api/store/{proof_hash}", self._error)
        app.router.add_post("/noid/api/share/store", self._no_id)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, "127.0.0.1", 0)
        await self._site.start()

    async def stop(self):
        await self._runner.cleanup()

    @property
    def url(self):
        port = self._site._server.sockets[0].getsockname()[1]
        return f"http://127.0.0.1:{port}"

    async def _error(self, request):
        return web.Response(status=500, text="database is locked")

    async def _no_id(self, request):
        return web.json_response({"ok": True})


async def failure_of(coro):
    try:
        await coro
    except StorageUnavailable as e:
        return e
    return None


def test_store_unavailable():
    print("\n5. Unreachable share store...")
    chat, receipt = make_chat()

    async def _run():
        api = BrokenShareApi()
        await api.start()
        try:
            broken = HttpBlobStore(f"{api.url}/broken", timeout=5.0)
            no_id = HttpBlobStore(f"{api.url}/noid", timeout=5.0)
            cache = ShareCache()
            results = (
                await failure_of(share(chat, receipt, broken, cache=cache)),
                await failure_of(broken.download("abc")),
                await failure_of(share(chat, receipt, no_id)),
                await failure_of(HttpLedger(f"{api.url}/broken", timeout=5.0).read("ab" * 32)),
                cache.get(content_hash(chat, receipt)),
            )
            closed_url = api.url
        finally:
            await api.stop()
        gone = await failure_of(share(chat, receipt, HttpBlobStore(closed_url, timeout=5.0)))
        return results + (gone,)

    upload, download, no_id, ledger_read, cached, gone = run(_run())
    check(upload is not None and upload.status == 500, "Upload 500 -> StorageUnavailable with status")
    check(cached is None, "Failed upload not cached")
    check(download is not None and download.status == 500, "Download 500 -> StorageUnavailable")
    check(no_id is not None, "Upload without an id -> StorageUnavailable")
    check(ledger_read is not None and ledger_read.status == 500, "Ledger lookup 500 -> StorageUnavailable")
    check(gone is not None and gone.status == 0, "Connection refused -> StorageUnavailable")
    check(isinstance(gone, InferproofError), "Reported through the common error base")


# ── 6. Concurrent shares ────────────────────────────────────────────

class SlowBlobStore(SqliteBlobStore):
    """Yields to the loop mid-upload."""

    async def upload(self, binary, request_hash, response_hash, signature):
        await asyncio.sleep(0.01)
        return await super().upload(binary, request_hash, response_hash, signature)


def test_concurrent_share():
    print("\n6. Concurrent shares...")
    chat, receipt = make_chat()
    store, cache = SlowBlobStore(), ShareCache()

    async def _run():
        return await asyncio.gather(*(share(chat, receipt, store, cache=cache) for _ in range(3)))

    results = run(_run())
    check(store.count() == 1, "Same content shared at once -> uploaded once")
    check(results[0] == results[1] == results[2], "Every caller gets the same link")
    check(cache._uploads == {}, "Upload locks released")

    plain = SlowBlobStore()

    async def _uncached():
        return await asyncio.gather(share(chat, receipt, plain), share(chat, receipt, plain))

    first, second = run(_uncached())
    check(plain.count() == 2 and first[0] != second[0], "Without a cache each call is its own share")


# ── Run all ─────────────────────────────────────────────────────────

if __name__ == "__main__":
    print("=" * 60)
    print("  inferproof Share Tests")
    print("=" * 60)

    test_share_roundtrip()
    test_share_failures()
    test_share_cache()
    test_share_url()
    test_store_unavailable()
    test_concurrent_share()

    print(f"\n{'=' * 60}")
    if failed == 0:
        print(f"  ALL {passed} TESTS PASSED!")
    else:
        print(f"  {passed} passed, {failed} FAILED")
    print("=" * 60)
    sys.exit(1 if failed else 0)
