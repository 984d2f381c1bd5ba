"""Exact oracle: MIP formulation plus pluggable solver backends."""

from cspcj.oracle.adapter import OracleCheck, solve_exact, to_solution, verify_with_oracle
from cspcj.oracle.base import (
    DISABLE_ENV,
    OracleBackend,
    OracleResult,
    OracleStatus,
    backend_available,
    backend_names,
    get_backend,
    oracle_enabled,
)
from cspcj.oracle.formulation import LinearConstraint, MipFormulation, build_formulation

__all__ = [
    "DISABLE_ENV",
    "LinearConstraint",
    "MipFormulation",
    "OracleBackend",
    "OracleCheck",
    "OracleResult",
    "OracleStatus",
    "backend_available",
    "backend_names",
    "build_formulation",
    "get_backend",
    "oracle_enabled",
    "solve_exact",
    "to_solution",
    "verify_with_oracle",
]
