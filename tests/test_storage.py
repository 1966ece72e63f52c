import pytest

from advisorydb.storage import Store


@pytest.fixture
def store(tmp_path):
    opened = Store.open(tmp_path / "store.db")
    yield opened
    opened.close()


def test_put_and_get_round_trip(store):
    with store.update() as tx:
        tx.create_bucket_if_not_exists("root").create_bucket_if_not_exists("child").put(
            "key", b"value"
        )
    with store.view() as tx:
        child = tx.bucket("root").bucket("child")
        assert child.get("key") == b"value"
        assert child.get("missing") is None


def test_persisted_across_reopen(tmp_path):
    path = tmp_path / "store.db"
    with Store.open(path) as first:
        with first.update() as tx:
            tx.create_bucket_if_not_exists("a").put("k", b"\x00\xffdata")
    with Store.open(path) as second:
        with second.view() as tx:
            assert tx.bucket("a").get("k") == b"\x00\xffdata"


def test_failed_update_is_rolled_back(store):
    with store.update() as tx:
        tx.create_bucket_if_not_exists("a").put("k", b"old")
    with pytest.raises(RuntimeError):
        with store.update() as tx:
            tx.bucket("a").put("k", b"new")
            tx.create_bucket_if_not_exists("b")
            raise RuntimeError("boom")
    with store.view() as tx:
        assert tx.bucket("a").get("k") == b"old"
        assert tx.bucket("b") is None


def test_view_is_read_only(store):
    with store.update() as tx:
        tx.create_bucket_if_not_exists("a")
    with store.view() as tx:
        with pytest.raises(ValueError, match="not writable"):
            tx.create_bucket_if_not_exists("x")
        with pytest.raises(ValueError, match="not writable"):
            tx.bucket("a").put("k", b"v")


def test_items_are_in_byte_order_with_buckets_as_none(store):
    with store.update() as tx:
        bkt = tx.create_bucket_if_not_exists("a")
        bkt.put("b", b"2")
        bkt.put("a", b"1")
        bkt.create_bucket_if_not_exists("B")
    with store.view() as tx:
        assert list(tx.bucket("a").items()) == [("B", None), ("a", b"1"), ("b", b"2")]


def test_bucket_names_with_prefix(store):
    with store.update() as tx:
        for name in ("pip::one", "npm::two", "pip::three", "plain"):
            tx.create_bucket_if_not_exists(name)
    with store.view() as tx:
        assert tx.bucket_names("pip::") == ["pip::one", "pip::three"]
        assert tx.bucket_names() == sorted(["pip::one", "npm::two", "pip::three", "plain"])


def test_delete_bucket(store):
    with store.update() as tx:
        tx.create_bucket_if_not_exists("a").put("k", b"v")
    store.batch(lambda tx: tx.delete_bucket("a"))
    with store.view() as tx:
        assert tx.bucket("a") is None
    with pytest.raises(KeyError):
        store.batch(lambda tx: tx.delete_bucket("a"))


def test_batch_returns_result(store):
    result = store.batch(lambda tx: tx.create_bucket_if_not_exists("a") is not None)
    assert result is True
    with store.view() as tx:
        assert tx.bucket_names() == ["a"]


def test_value_and_bucket_keys_conflict(store):
    with store.update() as tx:
        bkt = tx.create_bucket_if_not_exists("a")
        bkt.put("value", b"v")
        bkt.create_bucket_if_not_exists("nested")
        with pytest.raises(ValueError, match="incompatible"):
            bkt.create_bucket_if_not_exists("value")
        with pytest.raises(ValueError, match="incompatible"):
            bkt.put("nested", b"v")
        assert bkt.get("nested") is None


def test_empty_key_rejected(store):
    with store.update() as tx:
        with pytest.raises(ValueError, match="key required"):
            tx.create_bucket_if_not_exists("")
        with pytest.raises(ValueError, match="key required"):
            tx.create_bucket_if_not_exists("a").put("", b"v")


def test_corrupt_file_rejected(tmp_path):
    path = tmp_path / "broken.db"
    path.write_bytes(b"\x89not a store\xfe")
    with pytest.raises(ValueError, match="invalid database file"):
        Store.open(path)


def test_closed_store_rejects_transactions(tmp_path):
    opened = Store.open(tmp_path / "store.db")
    opened.close()
    with pytest.raises(ValueError, match="not open"):
        with opened.view():
            pass