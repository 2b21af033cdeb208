from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from sphsys.core.errors import ConfigurationError


@dataclass(frozen=True, slots=True)
class VariableSpec:
    """Shape/dtype description of one registered particle variable."""

    dtype: type
    vector: bool
    initial: float | int | bool


@dataclass
class BaseParticles:
    """
    Parallel attribute arrays for the particles of one body.

    Core variables are always present:

        pos, vel, acc_prior  (N, dim)
        mass, rho, p, vol    (N,)
        active               (N,) bool

    Local dynamics register additional buffers by name (e.g. "mom",
    "drho_dt", "indicator"). Registering an existing name returns the shared
    array, so several operators referencing the same body see the same data.

    Arrays are replaced (not resized in place) when particles are emitted or
    compacted; operators must therefore look variables up again in their
    per-execution setup instead of holding array references across steps.
    """

    dim: int
    _n: int = 0
    _variables: dict[str, np.ndarray] = field(default_factory=dict)
    _specs: dict[str, VariableSpec] = field(default_factory=dict)

    @classmethod
    def from_positions(
        cls,
        positions: np.ndarray,
        volumes: np.ndarray | float,
        rho0: float,
        velocities: np.ndarray | None = None,
    ) -> BaseParticles:
        positions = np.array(positions, dtype=np.float64, ndmin=2)
        n, dim = positions.shape
        if dim not in (1, 2, 3):
            raise ConfigurationError(f"dimensions must be 1, 2 or 3, got {dim}")

        particles = cls(dim=dim)
        particles._n = n
        particles.register_variable("pos", vector=True)
        particles.register_variable("vel", vector=True)
        particles.register_variable("acc_prior", vector=True)
        particles.register_variable("mass")
        particles.register_variable("rho", initial=float(rho0))
        particles.register_variable("p")
        particles.register_variable("vol")
        particles.register_variable("active", dtype=np.bool_, initial=True)

        particles.pos[:] = positions
        particles.vol[:] = volumes
        if velocities is not None:
            particles.vel[:] = velocities
        particles.mass[:] = particles.rho * particles.vol
        particles.validate()
        return particles

    # -- registry ---------------------------------------------------------

    def register_variable(
        self,
        name: str,
        dtype: type = np.float64,
        vector: bool = False,
        initial: float | int | bool = 0.0,
    ) -> np.ndarray:
        if name in self._variables:
            spec = self._specs[name]
            if spec.vector != vector or np.dtype(spec.dtype) != np.dtype(dtype):
                raise ConfigurationError(f"variable {name!r} already registered with a different layout")
            return self._variables[name]

        spec = VariableSpec(dtype=dtype, vector=vector, initial=initial)
        self._specs[name] = spec
        self._variables[name] = self._allocate(spec, self.n)
        return self._variables[name]

    def get_variable(self, name: str) -> np.ndarray:
        try:
            return self._variables[name]
        except KeyError:
            raise KeyError(f"particle variable {name!r} is not registered") from None

    def has_variable(self, name: str) -> bool:
        return name in self._variables

    @property
    def variable_names(self) -> list[str]:
        return list(self._variables)

    def _allocate(self, spec: VariableSpec, n: int) -> np.ndarray:
        shape = (n, self.dim) if spec.vector else (n,)
        return np.full(shape, spec.initial, dtype=spec.dtype)

    # -- core variables ---------------------------------------------------

    @property
    def n(self) -> int:
        return self._n

    @property
    def pos(self) -> np.ndarray:
        return self._variables["pos"]

    @property
    def vel(self) -> np.ndarray:
        return self._variables["vel"]

    @property
    def acc_prior(self) -> np.ndarray:
        return self._variables["acc_prior"]

    @property
    def mass(self) -> np.ndarray:
        return self._variables["mass"]

    @property
    def rho(self) -> np.ndarray:
        return self._variables["rho"]

    @property
    def p(self) -> np.ndarray:
        return self._variables["p"]

    @property
    def vol(self) -> np.ndarray:
        return self._variables["vol"]

    @property
    def active(self) -> np.ndarray:
        return self._variables["active"]

    @property
    def active_indices(self) -> np.ndarray:
        return np.flatnonzero(self.active)

    @property
    def number_of_active(self) -> int:
        return int(np.count_nonzero(self.active))

    # -- emission / deletion ----------------------------------------------

    def add_particles(
        self,
        positions: np.ndarray,
        volumes: np.ndarray | float,
        rho: float | np.ndarray | None = None,
        velocities: np.ndarray | None = None,
    ) -> np.ndarray:
        """
        Emit new particles at the end of the arrays.

        Every registered variable grows; new entries take the registered
        initial value, then the given positions/volumes/velocities/densities
        are written. Returns the indices of the new particles.
        """
        positions = np.array(positions, dtype=np.float64, ndmin=2)
        if positions.shape[1] != self.dim:
            raise ValueError(f"positions must have shape (M, {self.dim})")

        m = positions.shape[0]
        start = self.n
        for name, spec in self._specs.items():
            self._variables[name] = np.concatenate([self._variables[name], self._allocate(spec, m)], axis=0)
        self._n = start + m

        new_ids = np.arange(start, start + m)
        self.pos[new_ids] = positions
        self.vol[new_ids] = volumes
        if rho is not None:
            self.rho[new_ids] = rho
        if velocities is not None:
            self.vel[new_ids] = velocities
        self.mass[new_ids] = self.rho[new_ids] * self.vol[new_ids]
        return new_ids

    def mark_inactive(self, indices) -> None:
        """Deletion: the particles stay in the arrays until compact()."""
        self.active[np.asarray(indices, dtype=np.int64)] = False

    def compact(self) -> np.ndarray:
        """
        Drop inactive particles. Returns, for every kept particle, its index
        before compaction (new index k held old index kept[k]).
        """
        kept = self.active_indices
        for name in self._variables:
            self._variables[name] = self._variables[name][kept].copy()
        self._n = int(kept.size)
        return kept

    # -- snapshots --------------------------------------------------------

    def snapshot(self) -> dict[str, np.ndarray]:
        return {name: arr.copy() for name, arr in self._variables.items()}

    def restore(self, snapshot: dict[str, np.ndarray]) -> None:
        for name, arr in snapshot.items():
            current = self._variables.get(name)
            if current is not None and current.shape == arr.shape:
                current[...] = arr
            else:
                self._variables[name] = arr.copy()
        self._n = int(self._variables["pos"].shape[0])

    def validate(self) -> None:
        n = self.n
        for name, arr in self._variables.items():
            spec = self._specs[name]
            shape = (n, self.dim) if spec.vector else (n,)
            if arr.shape != shape:
                raise ValueError(f"{name} shape {arr.shape} != {shape}")

        if self.active.dtype != np.bool_:
            raise ValueError("active must be a bool array")

        if not np.isfinite(self.pos).all():
            raise ValueError("pos contains NaN/Inf")

        if np.any(self.vol[self.active] <= 0.0):
            raise ValueError("particle volumes must be > 0")
