"""
Bridge to the JavaScript reference implementations of Poseidon (circomlibjs)
and Groth16 proving (snarkjs).

The circuit was compiled against circomlib's Poseidon parameters, so hashing
goes through the same library the circuit's witness generator uses rather
than a re-parameterized port. A tiny driver script is written to a private
temp dir and run as `node driver.js '<json>'`; it prints one JSON object.
"""
from __future__ import annotations

import json
import logging
import os
import subprocess
import tempfile
from collections import OrderedDict
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .errors import ProverInvocationFailed, ProverLibraryUnavailable
from .field import FieldElement

log = logging.getLogger(__name__)

MISSING_MODULE_EXIT = 2

JS_DRIVER = r"""
const cfg = JSON.parse(process.argv[2]);

function load(name) {
  try {
    return require(name);
  } catch (e) {
    if (e && e.code === 'MODULE_NOT_FOUND') {
      console.error('missing module: ' + name);
      process.exit(2);
    }
    throw e;
  }
}

async function main() {
  if (cfg.mode === 'poseidon') {
    const { buildPoseidon } = load('circomlibjs');
    const poseidon = await buildPoseidon();
    const hashes = cfg.batches.map(
      (inputs) => poseidon.F.toObject(poseidon(inputs.map(BigInt))).toString()
    );
    process.stdout.write(JSON.stringify({ hashes }));
    process.exit(0);
  }
  if (cfg.mode === 'fullprove') {
    const snarkjs = load('snarkjs');
    const { proof, publicSignals } = await snarkjs.groth16.fullProve(
      cfg.input, cfg.wasm, cfg.zkey
    );
    process.stdout.write(JSON.stringify({ proof, publicSignals }));
    // snarkjs keeps curve worker threads alive
    process.exit(0);
  }
  throw new Error('Unknown mode: ' + cfg.mode);
}

main().catch((e) => {
  console.error((e && e.stack) || String(e));
  process.exit(1);
});
"""


class NodeBridge:
    def __init__(
        self,
        node_binary: str = "node",
        node_path: Optional[str] = None,
        timeout_s: float = 300.0,
    ) -> None:
        self.node_binary = node_binary
        self.node_path = node_path
        self.timeout_s = timeout_s
        self._tmpdir: Optional[tempfile.TemporaryDirectory] = None
        self._driver: Optional[Path] = None

    def _ensure_driver(self) -> Path:
        if self._driver is None or not self._driver.exists():
            self.close()
            # removed by close(), or at interpreter exit
            self._tmpdir = tempfile.TemporaryDirectory(prefix="colasseum-node-")
            driver = Path(self._tmpdir.name) / "driver.cjs"
            driver.write_text(JS_DRIVER, encoding="utf-8")
            self._driver = driver
        return self._driver

    def close(self) -> None:
        if self._tmpdir is not None:
            self._tmpdir.cleanup()
            self._tmpdir = None
        self._driver = None

    def __enter__(self) -> "NodeBridge":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def run(self, payload: Dict[str, Any], timeout_s: Optional[float] = None) -> Dict[str, Any]:
        driver = self._ensure_driver()
        env = dict(os.environ)
        if self.node_path:
            env["NODE_PATH"] = self.node_path
        cmd = [self.node_binary, str(driver), json.dumps(payload, separators=(",", ":"))]
        mode = payload.get("mode")
        log.debug("Running node driver (mode=%s)", mode)
        try:
            proc = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                env=env,
                timeout=timeout_s or self.timeout_s,
            )
        except FileNotFoundError as e:
            raise ProverLibraryUnavailable(
                f"Node runtime not found: {self.node_binary}", binary=self.node_binary
            ) from e
        except subprocess.TimeoutExpired as e:
            raise ProverInvocationFailed(
                f"Node driver timed out after {e.timeout}s", mode=mode, timeout_s=e.timeout
            ) from e

        if proc.returncode == MISSING_MODULE_EXIT:
            raise ProverLibraryUnavailable(
                f"Node module unavailable: {proc.stderr.strip()}",
                mode=mode,
                node_path=self.node_path,
            )
        if proc.returncode != 0:
            raise ProverInvocationFailed(
                f"Node driver failed (exit {proc.returncode})",
                mode=mode,
                returncode=proc.returncode,
                stderr=proc.stderr.strip()[-2000:],
            )
        try:
            return json.loads(proc.stdout)
        except json.JSONDecodeError as e:
            raise ProverInvocationFailed(
                f"Node driver returned invalid JSON: {e}", mode=mode
            ) from e


class PoseidonHasher:
    """circomlib Poseidon through the node bridge, memoized per input tuple (LRU)."""

    def __init__(self, bridge: NodeBridge, cache_size: int = 4096) -> None:
        self.bridge = bridge
        self.cache_size = cache_size
        self._cache: "OrderedDict[tuple, FieldElement]" = OrderedDict()

    def _remember(self, key: tuple, value: FieldElement) -> None:
        self._cache[key] = value
        self._cache.move_to_end(key)
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)

    def hash_many(self, batches: Sequence[Sequence[FieldElement]]) -> List[FieldElement]:
        keys = [tuple(int(x) for x in inputs) for inputs in batches]
        found: Dict[tuple, FieldElement] = {}
        for k in dict.fromkeys(keys):
            if k in self._cache:
                self._cache.move_to_end(k)
                found[k] = self._cache[k]
        pending = [k for k in dict.fromkeys(keys) if k not in found]
        if pending:
            out = self.bridge.run(
                {"mode": "poseidon", "batches": [[str(v) for v in k] for k in pending]}
            )
            for k, h in zip(pending, out["hashes"]):
                found[k] = FieldElement(int(h))
                self._remember(k, found[k])
        return [found[k] for k in keys]

    def hash2(self, a: FieldElement, b: FieldElement) -> FieldElement:
        return self.hash_many([(a, b)])[0]

    def hash3(self, a: FieldElement, b: FieldElement, c: FieldElement) -> FieldElement:
        return self.hash_many([(a, b, c)])[0]


class SnarkjsProver:
    """Groth16 fullProve via snarkjs."""

    def __init__(self, bridge: NodeBridge) -> None:
        self.bridge = bridge

    def full_prove(self, inputs: Dict[str, str], wasm: Path, zkey: Path) -> Dict[str, Any]:
        return self.bridge.run(
            {"mode": "fullprove", "input": inputs, "wasm": str(wasm), "zkey": str(zkey)}
        )
