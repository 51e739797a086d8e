# hsreg/cli/run_experiment.py
from __future__ import annotations

import argparse
import datetime as _dt
import logging
import sys
from functools import reduce
from pathlib import Path
from typing import Any, Dict, List

import matplotlib

from hsreg.utils.io import load_yaml, save_json, save_yaml
from hsreg.utils.logging_utils import log_config, setup_logging

logger = logging.getLogger("hsreg.cli")


def _verbosity_level(verbosity: int) -> int:
    if verbosity >= 2:
        return logging.DEBUG
    if verbosity == 1:
        return logging.INFO
    return logging.WARNING


def _parse_overrides(pairs: List[str]) -> Dict[str, Any]:
    """
    Parse CLI overrides like:
      ['seed=42', 'inference.nuts.chains=2', 'data.n=100', 'cache.enabled=false']

    Returns a nested dict merged later into config.
    """

    def cast_val(v: str) -> Any:
        low = v.lower()
        if low in {"true", "false"}:
            return low == "true"
        if low in {"null", "none"}:
            return None
        try:
            if "." in v or "e" in low:
                return float(v)
            return int(v)
        except ValueError:
            return v

    root: Dict[str, Any] = {}
    for item in pairs:
        if "=" not in item:
            raise ValueError(f"Override must be key=value, got: '{item}'")
        k, v = item.split("=", 1)
        keys = k.split(".")
        d = reduce(lambda acc, kk: acc.setdefault(kk, {}), keys[:-1], root)
        if not isinstance(d, dict):
            raise ValueError(f"Key path conflict at '{k}'")
        d[keys[-1]] = cast_val(v)
    return root


def _deep_update(dst: Dict[str, Any], src: Dict[str, Any]) -> Dict[str, Any]:
    for k, v in src.items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            _deep_update(dst[k], v)
        else:
            dst[k] = v
    return dst


def _load_and_merge_configs(paths: List[Path]) -> Dict[str, Any]:
    """
    Load and recursively merge YAML configs. Honors a top-level `defaults`
    key by loading and merging parent configs (relative to the current file).
    """

    def _load_with_defaults(path: Path, seen: set[Path]) -> Dict[str, Any]:
        norm_path = path.resolve()
        if norm_path in seen:
            cycle = " -> ".join(str(p) for p in (*seen, norm_path))
            raise ValueError(f"Config defaults cycle detected: {cycle}")
        seen = set(seen)
        seen.add(norm_path)

        data = load_yaml(norm_path) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config {norm_path} must be a YAML mapping at top-level.")

        defaults = data.pop("defaults", None)
        base: Dict[str, Any] = {}
        if defaults:
            if isinstance(defaults, (str, Path)):
                defaults = [defaults]
            if not isinstance(defaults, list):
                raise ValueError(f"'defaults' in {norm_path} must be string or list.")
            for item in defaults:
                ref = Path(item)
                if not ref.is_absolute():
                    candidates = [norm_path.parent / ref, Path.cwd() / ref]
                    resolved = next((c.resolve() for c in candidates if c.exists()), None)
                    if resolved is None:
                        raise FileNotFoundError(f"Default config '{item}' referenced from {norm_path} not found.")
                    ref = resolved
                base = _deep_update(base, _load_with_defaults(ref, seen))
        return _deep_update(base, data)

    cfg: Dict[str, Any] = {}
    for p in paths:
        _deep_update(cfg, _load_with_defaults(p, set()))
    return cfg


def _timestamp() -> str:
    return _dt.datetime.now().strftime("%Y%m%d-%H%M%S")


def _derive_run_dir(base_out: Path, exp_name: str | None) -> Path:
    tag = exp_name if exp_name else "exp"
    return base_out / f"{tag}-{_timestamp()}"


def _configure_devices(cfg: Dict[str, Any]) -> None:
    """Expose one host device per chain when chains run in parallel."""
    nuts = cfg.get("inference", {}).get("nuts", {}) or {}
    if nuts.get("chain_method") == "parallel":
        import numpyro

        numpyro.set_host_device_count(int(nuts.get("chains", 4)))


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Simulate brain-volume data, fit naive and horseshoe models, compare with LOO.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--config",
        "-c",
        nargs="+",
        type=str,
        required=True,
        help="One or more YAML config files (merged from left to right).",
    )
    parser.add_argument(
        "--override",
        "-o",
        nargs="*",
        default=[],
        help="Override config keys: e.g., data.seed=404 inference.nuts.chains=2",
    )
    parser.add_argument(
        "--outdir",
        type=str,
        default="outputs/runs",
        help="Base output directory for this run.",
    )
    parser.add_argument(
        "--name",
        type=str,
        default=None,
        help="Experiment name tag used in run directory naming.",
    )
    parser.add_argument(
        "--verbosity",
        "-v",
        action="count",
        default=0,
        help="Increase logging verbosity (-v INFO, -vv DEBUG).",
    )

    args = parser.parse_args(argv)
    level = _verbosity_level(args.verbosity)

    try:
        cfg_paths = [Path(p).expanduser().resolve() for p in args.config]
        for p in cfg_paths:
            if not p.exists():
                raise FileNotFoundError(f"Config not found: {p}")

        resolved_cfg = _deep_update(_load_and_merge_configs(cfg_paths), _parse_overrides(args.override or []))

        base_out = Path(args.outdir).expanduser().resolve()
        run_dir = _derive_run_dir(base_out, args.name or resolved_cfg.get("name"))
        resolved_cfg.setdefault("io", {})
        resolved_cfg["io"]["run_dir"] = str(run_dir)

        setup_logging(level, log_file=str(run_dir / "run.log"))
        log_config(logger, resolved_cfg)
        save_yaml(resolved_cfg, run_dir / "resolved_config.yaml")

        _configure_devices(resolved_cfg)
        matplotlib.use("Agg")
        from hsreg.experiments.runner import run_experiment

        metrics = run_experiment(resolved_cfg, run_dir)
        save_json(metrics, run_dir / "metrics.json")

        print(f"[OK] Run finished. Artifacts in: {run_dir}")
        return 0
    except Exception:  # pragma: no cover
        logger.exception("Experiment failed.")
        print("[FATAL] Experiment failed; see log for details.", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
