# pipeline.py
# The same kind of pipeline as nearcore_pipeline.yml, written with the DSL.
from __future__ import annotations

from barrierci import command, steps, trigger, wait

LINUX = ["distro=amazonlinux"]


def pipeline():
    return steps(
        command("cargo test", "cargo test --locked --workspace", timeout=60, agents=LINUX, branches="!master"),
        command("sanity checks", ["cargo fmt --all -- --check", "cargo check --all --tests"],
                timeout=30, agents=LINUX, branches="!master"),
        [
            command(f"pytest {suite}", f"python3 pytest/tests/sanity/{suite}.py",
                    timeout=30, agents=LINUX, branches="!master !beta !stable")
            for suite in ("backward_compatible", "db_migration")
        ],
        command("coverage", "python3 scripts/parallel_coverage.py",
                timeout=30, agents=LINUX, soft_fail=[1], branches="master"),
        wait(),
        trigger("nearcore-release", branches="master"),
        trigger("nearcore-nightly-release", branches="master"),
    )
