"""
Utility functions for the CAR T-cell Agent-Based Model.
All computationally intensive functions are JIT-compiled with Numba for maximum speed.
"""

import math

import numpy as np
from numba import njit, prange
from scipy.special import expit as sigmoid
from scipy import stats

# ============================================================================
# SIGNALING SPECIES (indices into the signaling state vector)
# ============================================================================

IL2_INT_TOTAL = 0   # IL-2 bound to the cell (both complexes)
IL2_EXT = 1         # IL-2 available in the shell around the cell
IL2R_TOTAL = 2      # all receptor complexes, free and bound
IL2Rbg = 3          # free two-chain complex
IL2Rbga = 4         # free three-chain complex
IL2_IL2Rbg = 5      # IL-2 bound two-chain complex
IL2_IL2Rbga = 6     # IL-2 bound three-chain complex
GRANZYME = 7        # lytic effector (CD8 only)

NUM_SHARED_SPECIES = 7
NUM_LYTIC_SPECIES = 8

# ============================================================================
# RANDOM NUMBER STREAM MANAGEMENT
# ============================================================================

class RandomStream:
    """
    Single stream of uniform random numbers shared by every stochastic draw
    in a run (binding, shuffles, jitter, parameter draws).
    Can also replay a pre-generated stream for exact reproducibility.
    """
    def __init__(self, seed=None, stream=None):
        self.rng = np.random.default_rng(seed)
        self.stream = None if stream is None else np.asarray(stream, dtype=np.float64)
        self.index = 0

    @classmethod
    def from_file(cls, stream_file):
        """Load a pre-generated stream of uniforms from a text file."""
        print(f"Loading random stream from {stream_file}...")
        stream = np.loadtxt(stream_file, dtype=np.float64)
        print(f"Loaded {len(stream)} random numbers")
        return cls(stream=stream)

    def runif(self):
        """Draw one uniform random number in [0, 1)."""
        if self.stream is None:
            self.index += 1
            return float(self.rng.random())

        if self.index >= len(self.stream):
            raise RuntimeError(f"Random stream exhausted! Requested value at index {self.index}, but stream has {len(self.stream)} values")

        val = float(self.stream[self.index])
        self.index += 1
        return val

    def shuffle(self, items):
        """Shuffle a list in place (Fisher-Yates, one draw per swap)."""
        for i in range(len(items) - 1, 0, -1):
            j = int(self.runif() * (i + 1))
            items[i], items[j] = items[j], items[i]
        return items

    def normal(self, mu, sigma):
        """Normal draw via the quantile function of a single uniform."""
        u = min(max(self.runif(), 1e-12), 1 - 1e-12)
        return float(stats.norm.ppf(u, loc=mu, scale=sigma))

    def uniform(self, low, high):
        return low + self.runif() * (high - low)

    def jitter(self, mean, spread):
        """Return mean +/- a rounded uniform offset of at most spread."""
        return mean + math.floor(spread * (2 * self.runif() - 1) + 0.5)


# ============================================================================
# SIGNALING ODE KERNELS
# ============================================================================

@njit
def signaling_derivatives(y, kon_2, kon_3, koff, k_convert, k_rec):
    """Right-hand side of the IL-2 / IL-2 receptor binding network."""
    dydt = np.zeros(y.shape[0])

    ext = y[IL2_EXT]
    rbg = y[IL2Rbg]
    rbga = y[IL2Rbga]
    b_rbg = y[IL2_IL2Rbg]
    b_rbga = y[IL2_IL2Rbga]
    bound = b_rbg + b_rbga

    bind_2 = kon_2 * rbg * ext
    bind_3 = kon_3 * rbga * ext

    dydt[IL2_EXT] = koff * b_rbg + koff * b_rbga - bind_2 - bind_3
    dydt[IL2Rbg] = koff * b_rbg - bind_2 - k_convert * bound * rbg + k_rec * (b_rbg + b_rbga + rbga)
    dydt[IL2Rbga] = koff * b_rbga - bind_3 + k_convert * bound * rbg - k_rec * rbga
    dydt[IL2_IL2Rbg] = bind_2 - koff * b_rbg - k_convert * bound * b_rbg - k_rec * b_rbg
    dydt[IL2_IL2Rbga] = bind_3 - koff * b_rbga + k_convert * bound * b_rbg - k_rec * b_rbga

    dydt[IL2_INT_TOTAL] = dydt[IL2_IL2Rbg] + dydt[IL2_IL2Rbga]
    dydt[IL2R_TOTAL] = dydt[IL2Rbg] + dydt[IL2Rbga] + dydt[IL2_IL2Rbg] + dydt[IL2_IL2Rbga]

    return dydt


@njit
def rk4_integrate(y0, t0, t1, h, kon_2, kon_3, koff, k_convert, k_rec):
    """Classical fixed-step Runge-Kutta integration of the signaling network."""
    y = y0.copy()
    n_steps = int(round((t1 - t0) / h))

    for _ in range(n_steps):
        k1 = signaling_derivatives(y, kon_2, kon_3, koff, k_convert, k_rec)
        k2 = signaling_derivatives(y + 0.5 * h * k1, kon_2, kon_3, koff, k_convert, k_rec)
        k3 = signaling_derivatives(y + 0.5 * h * k2, kon_2, kon_3, koff, k_convert, k_rec)
        k4 = signaling_derivatives(y + h * k3, kon_2, kon_3, koff, k_convert, k_rec)
        y = y + (h / 6.0) * (k1 + 2 * k2 + 2 * k3 + k4)

    return y


@njit
def delayed_index(ticker, length, delay):
    """Index into a circular history buffer `delay` entries before the current tick."""
    index = (ticker % length) - delay
    if index < 0:
        index += length
    return index


def hill_binding_score(density, contact_frac, kd, beta, receptor_ratio, alpha):
    """Hill-type receptor occupancy mapped onto [0, 1) by a logistic."""
    engaged = density * contact_frac
    hill = (engaged / (kd * beta + engaged)) * receptor_ratio * alpha
    return 2 * sigmoid(hill) - 1


# ============================================================================
# LATTICE KERNELS
# ============================================================================

@njit(parallel=True)
def diffuse_matrix(mat, D, decay, max_cell_value):
    """
    Fast 8-neighbor diffusion using Moore neighborhood, followed by
    first-order decay. Uses parallel processing for maximum speed.
    """
    nr, nc = mat.shape

    # Create padded matrix
    padded = np.zeros((nr + 2, nc + 2))
    padded[1:nr+1, 1:nc+1] = mat

    laplacian = np.zeros((nr, nc))

    for i in prange(nr):
        for j in range(nc):
            laplacian[i, j] = (
                padded[i, j] +
                padded[i, j+1] +
                padded[i, j+2] +
                padded[i+1, j] +
                padded[i+1, j+2] +
                padded[i+2, j] +
                padded[i+2, j+1] +
                padded[i+2, j+2] -
                8 * mat[i, j]
            )

    mat_new = (mat + D * laplacian) * (1.0 - decay)

    # Apply maximum constraint
    mat_new = np.minimum(max_cell_value, mat_new)
    mat_new = np.maximum(0.0, mat_new)

    return mat_new


@njit
def neighborhood_average(x, y, radius, field):
    """Average of a 2D field over the Moore neighbourhood of (x, y)."""
    nx, ny = field.shape
    x_start = max(0, x - radius)
    x_end = min(nx, x + radius + 1)
    y_start = max(0, y - radius)
    y_end = min(ny, y + radius + 1)

    total = 0.0
    count = 0
    for i in range(x_start, x_end):
        for j in range(y_start, y_end):
            total += field[i, j]
            count += 1

    return total / count if count > 0 else 0.0
