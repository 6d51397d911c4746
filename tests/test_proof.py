import threading

import httpx
import pytest

from colasseum.commitment import CommitmentScheme, owner_to_field, secret_to_field
from colasseum.errors import (
    CommitmentMismatch,
    ProverArtifactsUnavailable,
    ProverInputInvalid,
    ProverInvocationFailed,
)
from colasseum.field import P
from colasseum.proof import (
    CircuitArtifacts,
    ProofPreparer,
    ProofJob,
    ProofState,
    RawProof,
    SolidityProof,
    to_onchain_format,
)

from conftest import EXPECTED_ONCHAIN_HEX, OWNER, SECRET, CannedProver, snarkjs_output

ROOT = 0x7BDC5FFF0246D9CA8B22368D9EA366AED5E6F5A7BA126CF31A20EBD26BC55808
DIFFICULTY = 56123699671382756980118989090403269457816318975425729086405000000000


class TestOnchainFormat:
    def test_matches_verifier_calldata(self):
        raw = RawProof.from_snarkjs(snarkjs_output(["1", "2", "3", "4", "5"]))
        assert to_onchain_format(raw).to_hex() == EXPECTED_ONCHAIN_HEX

    def test_only_g2_coordinates_swap(self):
        raw = RawProof(pi_a=(1, 2), pi_b=((3, 4), (5, 6)), pi_c=(7, 8), public_signals=())
        proof = to_onchain_format(raw)
        assert proof.pA == (1, 2)
        assert proof.pB == ((4, 3), (6, 5))
        assert proof.pC == (7, 8)

    def test_json_roundtrip_accepts_hex(self):
        raw = RawProof.from_snarkjs(snarkjs_output(["1"]))
        proof = to_onchain_format(raw)
        assert SolidityProof.from_json(proof.to_hex()) == proof
        assert SolidityProof.from_json(proof.to_json()) == proof

    def test_malformed_output(self):
        with pytest.raises(ProverInvocationFailed):
            RawProof.from_snarkjs({"proof": {"pi_a": ["1"]}, "publicSignals": []})


def commitment_for(hasher):
    return CommitmentScheme(hasher).commit(SECRET, OWNER).value


class TestPrepare:
    def test_circuit_inputs(self, hasher, artifacts):
        c = commitment_for(hasher)
        inputs = ProofPreparer(CannedProver(), artifacts).prepare(SECRET, OWNER, ROOT, c, DIFFICULTY, 3_900_001)
        circuit = inputs.to_circuit_input()
        assert circuit == {
            "passphrase": str(secret_to_field(SECRET)),
            "ownerAddress": str(owner_to_field(OWNER)),
            "rootHigh": str(ROOT >> 128),
            "rootLow": str(ROOT & ((1 << 128) - 1)),
            "ticketHash": str(c),
            "difficulty": str(DIFFICULTY),
            "chances": "3900001",
        }
        assert inputs.public_signals() == [ROOT >> 128, ROOT & ((1 << 128) - 1), c, DIFFICULTY, 3_900_001]

    @pytest.mark.parametrize("difficulty,num_chances", [(0, 1), (1, 0), (P, 1), (1, P)])
    def test_rejects_out_of_range(self, hasher, artifacts, difficulty, num_chances):
        prep = ProofPreparer(CannedProver(), artifacts)
        with pytest.raises(ProverInputInvalid):
            prep.prepare(SECRET, OWNER, ROOT, commitment_for(hasher), difficulty, num_chances)

    def test_rejects_oversized_root(self, hasher, artifacts):
        with pytest.raises(ProverInputInvalid):
            ProofPreparer(CannedProver(), artifacts).prepare(
                SECRET, OWNER, 1 << 256, commitment_for(hasher), 1, 1
            )

    def test_checks_commitment_when_scheme_given(self, hasher, artifacts):
        prep = ProofPreparer(CannedProver(), artifacts, scheme=CommitmentScheme(hasher))
        with pytest.raises(CommitmentMismatch):
            prep.prepare("other", OWNER, ROOT, commitment_for(hasher), 1, 1)


class TestGenerate:
    def test_generate(self, hasher, artifacts):
        prover = CannedProver()
        bundle = ProofPreparer(prover, artifacts).generate(
            SECRET, OWNER, ROOT, commitment_for(hasher), DIFFICULTY, 7
        )
        assert bundle.proof.to_hex() == EXPECTED_ONCHAIN_HEX
        assert bundle.public_signals[2:] == [commitment_for(hasher), DIFFICULTY, 7]
        assert len(prover.calls) == 1

    def test_signal_mismatch(self, hasher, artifacts):
        class WrongSignals(CannedProver):
            def full_prove(self, inputs, wasm, zkey):
                return snarkjs_output(["0", "0", "0", "0", "0"])

        with pytest.raises(ProverInvocationFailed) as exc:
            ProofPreparer(WrongSignals(), artifacts).generate(
                SECRET, OWNER, ROOT, commitment_for(hasher), 1, 1
            )
        assert exc.value.detail["got"] == ["0"] * 5

    def test_missing_artifacts(self, hasher, tmp_path):
        artifacts = CircuitArtifacts(str(tmp_path / "nope.wasm"), str(tmp_path / "nope.zkey"))
        with pytest.raises(ProverArtifactsUnavailable):
            ProofPreparer(CannedProver(), artifacts).generate(
                SECRET, OWNER, ROOT, commitment_for(hasher), 1, 1
            )


class TestArtifacts:
    def test_remote_artifacts_fetched_once(self, tmp_path):
        requests = []

        def handler(request):
            requests.append(str(request.url))
            return httpx.Response(200, content=b"payload-" + request.url.path.encode())

        client = httpx.Client(transport=httpx.MockTransport(handler))
        urls = ("https://cdn.example/c/challenge.wasm", "https://cdn.example/c/challenge_final.zkey")
        arts = CircuitArtifacts(*urls, cache_dir=tmp_path)
        wasm, zkey = arts.ensure_local(client)
        assert wasm.read_bytes() == b"payload-/c/challenge.wasm"
        assert zkey.name.endswith("challenge_final.zkey")
        arts.ensure_local(client)
        # a fresh instance finds the cached files
        CircuitArtifacts(*urls, cache_dir=tmp_path).ensure_local(client)
        assert requests == list(urls)

    def test_remote_failure(self, tmp_path):
        client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(404)))
        arts = CircuitArtifacts("https://cdn.example/x.wasm", "https://cdn.example/x.zkey", cache_dir=tmp_path)
        with pytest.raises(ProverArtifactsUnavailable):
            arts.ensure_local(client)
        assert not list(tmp_path.glob("*.part"))


class TestProofJob:
    def test_states_and_dedupe(self, hasher, artifacts):
        gate = threading.Event()
        prover = CannedProver(gate=gate)
        prep = ProofPreparer(prover, artifacts)
        states = []
        args = (SECRET, OWNER, ROOT, commitment_for(hasher), DIFFICULTY, 3)
        try:
            job = prep.submit(1, *args, listener=lambda j, s: states.append(s))
            again = prep.submit(1, *args)
            assert again is job
            gate.set()
            bundle = job.result(timeout=10)
        finally:
            prep.shutdown()
        assert bundle.proof.to_hex() == EXPECTED_ONCHAIN_HEX
        assert states == [ProofState.PREPARING, ProofState.PROVING, ProofState.DONE]
        assert job.done()
        assert len(prover.calls) == 1

    def test_new_job_after_completion(self, hasher, artifacts):
        prep = ProofPreparer(CannedProver(), artifacts)
        args = (SECRET, OWNER, ROOT, commitment_for(hasher), DIFFICULTY, 3)
        try:
            first = prep.submit(1, *args)
            first.result(timeout=10)
            second = prep.submit(1, *args)
            second.result(timeout=10)
        finally:
            prep.shutdown()
        assert first is not second

    def test_failed_job(self, hasher, artifacts):
        class Exploding(CannedProver):
            def full_prove(self, inputs, wasm, zkey):
                raise ProverInvocationFailed("snarkjs crashed")

        prep = ProofPreparer(Exploding(), artifacts)
        states = []
        try:
            job = prep.submit(2, SECRET, OWNER, ROOT, commitment_for(hasher), 1, 1,
                              listener=lambda j, s: states.append(s))
            with pytest.raises(ProverInvocationFailed):
                job.result(timeout=10)
        finally:
            prep.shutdown()
        assert job.state is ProofState.FAILED
        assert isinstance(job.error, ProverInvocationFailed)
        assert states[-1] is ProofState.FAILED

    def test_result_of_unsubmitted_job(self):
        with pytest.raises(RuntimeError, match="never submitted"):
            ProofJob(9).result()
