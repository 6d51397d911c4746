import json
import subprocess

import pytest

from colasseum.errors import ProverInvocationFailed, ProverLibraryUnavailable
from colasseum.field import FieldElement
from colasseum.node_bridge import NodeBridge, PoseidonHasher, SnarkjsProver


class FakeNode:
    def __init__(self, returncode=0, stdout=None, stderr=""):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.payloads = []

    def __call__(self, cmd, **kw):
        payload = json.loads(cmd[2])
        self.payloads.append(payload)
        stdout = self.stdout
        if stdout is None:
            # "hash" = sum of inputs, enough to check plumbing
            stdout = json.dumps({"hashes": [str(sum(int(x) for x in b)) for b in payload["batches"]]})
        return subprocess.CompletedProcess(cmd, self.returncode, stdout=stdout, stderr=self.stderr)


@pytest.fixture
def bridge(monkeypatch):
    def install(fake):
        monkeypatch.setattr(subprocess, "run", fake)
        return NodeBridge("node", node_path="/opt/js/node_modules")
    return install


def test_poseidon_batches_and_memoizes(bridge):
    fake = FakeNode()
    hasher = PoseidonHasher(bridge(fake))
    a, b, c = FieldElement(1), FieldElement(2), FieldElement(3)
    assert hasher.hash3(a, b, c) == FieldElement(6)
    assert hasher.hash3(a, b, c) == FieldElement(6)
    assert hasher.hash_many([(a, b), (a, b), (b, c)]) == [FieldElement(3)] * 2 + [FieldElement(5)]
    assert [p["batches"] for p in fake.payloads] == [[["1", "2", "3"]], [["1", "2"], ["2", "3"]]]


def test_driver_script_written_once(bridge):
    nb = bridge(FakeNode())
    first = nb._ensure_driver()
    assert first.read_text(encoding="utf-8").startswith("\nconst cfg")
    assert nb._ensure_driver() == first


def test_full_prove_payload(bridge, tmp_path):
    fake = FakeNode(stdout=json.dumps({"proof": {}, "publicSignals": []}))
    out = SnarkjsProver(bridge(fake)).full_prove({"chances": "1"}, tmp_path / "c.wasm", tmp_path / "c.zkey")
    assert out == {"proof": {}, "publicSignals": []}
    assert fake.payloads[0]["mode"] == "fullprove"
    assert fake.payloads[0]["wasm"] == str(tmp_path / "c.wasm")


def test_missing_module(bridge):
    nb = bridge(FakeNode(returncode=2, stderr="missing module: circomlibjs"))
    with pytest.raises(ProverLibraryUnavailable) as exc:
        nb.run({"mode": "poseidon", "batches": []})
    assert "circomlibjs" in str(exc.value)


def test_missing_binary(monkeypatch):
    def boom(cmd, **kw):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(subprocess, "run", boom)
    with pytest.raises(ProverLibraryUnavailable):
        NodeBridge("no-such-node").run({"mode": "poseidon", "batches": []})


def test_driver_failure_and_bad_output(bridge):
    with pytest.raises(ProverInvocationFailed) as exc:
        bridge(FakeNode(returncode=1, stderr="Error: boom")).run({"mode": "fullprove"})
    assert exc.value.detail["stderr"] == "Error: boom"
    with pytest.raises(ProverInvocationFailed):
        bridge(FakeNode(stdout="not json")).run({"mode": "fullprove"})


def test_timeout(monkeypatch):
    def slow(cmd, **kw):
        raise subprocess.TimeoutExpired(cmd, kw["timeout"])

    monkeypatch.setattr(subprocess, "run", slow)
    with pytest.raises(ProverInvocationFailed) as exc:
        NodeBridge(timeout_s=1.5).run({"mode": "fullprove"})
    assert exc.value.detail["timeout_s"] == 1.5


def test_close_removes_driver_dir(bridge):
    nb = bridge(FakeNode())
    driver = nb._ensure_driver()
    nb.close()
    assert not driver.parent.exists()
    # a later run writes a fresh driver
    assert nb._ensure_driver().exists()
    nb.close()


def test_memo_is_bounded(bridge):
    fake = FakeNode()
    hasher = PoseidonHasher(bridge(fake), cache_size=2)
    one, two, three = (FieldElement(i) for i in (1, 2, 3))
    hasher.hash2(one, one)
    hasher.hash2(two, two)
    hasher.hash2(one, one)  # refreshes (1, 1)
    hasher.hash2(three, three)  # evicts (2, 2)
    assert len(hasher._cache) == 2
    assert len(fake.payloads) == 3
    hasher.hash2(two, two)
    assert len(fake.payloads) == 4
    hasher.hash2(three, three)
    assert len(fake.payloads) == 4
