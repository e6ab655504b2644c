"""
Tests for request id derivation and nonce generation.
"""
import hashlib
import threading

from hypothesis import given, settings, strategies as st

from gasless_sdk.request_id import REQUEST_ID_LENGTH, derive_request_id, generate_nonce

account_strategy = st.builds(
    lambda shard, realm, num: f"{shard}.{realm}.{num}",
    st.integers(0, 3), st.integers(0, 3), st.integers(1, 10**9),
)
nonce_strategy = st.integers(min_value=0, max_value=2**63)


def test_matches_reference_derivation():
    expected = hashlib.sha256(b"0.0.5001-0.0.5002-7").hexdigest()[:32]
    assert derive_request_id("0.0.5001", "0.0.5002", 7) == expected


def test_string_and_int_nonce_agree():
    assert derive_request_id("0.0.1", "0.0.2", 42) == derive_request_id("0.0.1", "0.0.2", "42")


def test_checksummed_ids_do_not_collide():
    # Same plain preimage "0.0.1-abcde-0.0.2-7" for both triples
    assert derive_request_id("0.0.1-abcde", "0.0.2", 7) != derive_request_id("0.0.1", "abcde-0.0.2", 7)


def test_checksummed_ids_are_length_prefixed():
    expected = hashlib.sha256(b"11:0.0.1-abcde-5:0.0.2-1:7").hexdigest()[:32]
    assert derive_request_id("0.0.1-abcde", "0.0.2", 7) == expected


@settings(max_examples=200)
@given(first=st.tuples(st.text(max_size=8), st.text(max_size=8), st.text(max_size=4)),
       second=st.tuples(st.text(max_size=8), st.text(max_size=8), st.text(max_size=4)))
def test_distinct_triples_have_distinct_ids(first, second):
    if first != second:
        assert derive_request_id(*first) != derive_request_id(*second)


@settings(max_examples=100)
@given(sender=account_strategy, recipient=account_strategy, nonce=nonce_strategy)
def test_derivation_is_deterministic(sender, recipient, nonce):
    first = derive_request_id(sender, recipient, nonce)

    assert first == derive_request_id(sender, recipient, nonce)
    assert len(first) == REQUEST_ID_LENGTH
    assert all(c in "0123456789abcdef" for c in first)


@settings(max_examples=100)
@given(sender=account_strategy, recipient=account_strategy,
       nonces=st.tuples(nonce_strategy, nonce_strategy).filter(lambda pair: pair[0] != pair[1]))
def test_different_nonces_give_different_ids(sender, recipient, nonces):
    assert derive_request_id(sender, recipient, nonces[0]) != derive_request_id(sender, recipient, nonces[1])


def test_generate_nonce_strictly_increasing():
    nonces = [generate_nonce() for _ in range(1000)]
    assert all(later > earlier for earlier, later in zip(nonces, nonces[1:]))


def test_generate_nonce_unique_across_threads():
    results = []
    lock = threading.Lock()

    def worker():
        local = [generate_nonce() for _ in range(200)]
        with lock:
            results.extend(local)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(set(results)) == len(results) == 1600
