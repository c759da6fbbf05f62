"""
Free-space checks and best-location search used by movement, division and
treatment seeding.
"""

from cell_states import TISSUE_CODES, CODE_C_CELL, CODE_S_CELL, TYPE_APOPT, TYPE_NECRO

LAYER_SAME = 0
LAYER_ABOVE = 1
LAYER_BELOW = 2


def _fits(env, occupants, extra_volume):
    """Volume and tissue height constraints for a location with a new agent."""
    total_volume = sum(a.volume for a in occupants) + extra_volume
    if total_volume > env.volume:
        return False

    height = total_volume / env.area
    for agent in occupants:
        if agent.code in TISSUE_CODES and height > agent.params['max_height'].get_mu():
            return False
    return True


def get_free_locations(sim, cell):
    """Neighbouring locations (including the current one) that can take the cell."""
    env = sim.environment
    free = []

    for loc in env.neighbor_locations(cell.location):
        others = [a for a in env.objects_at(loc) if a is not cell]
        n = len(others) + 1

        if n < 2:
            free.append(loc)
        elif n > env.max_agents:
            continue
        elif _fits(env, others, cell.volume):
            free.append(loc)

    return free


def count_living_targets(env, loc):
    """Number of living cancer and cancer stem cells at a location."""
    return sum(1 for a in env.objects_at(loc)
               if a.code in (CODE_C_CELL, CODE_S_CELL) and a.type not in (TYPE_APOPT, TYPE_NECRO))


def get_best_location(sim, cell):
    """
    Pick a destination among the free neighbouring locations.

    Each location scores accuracy * (local glucose fraction)
    + (1 - accuracy) * noise + number of living cancer cells there.
    The best location is kept per layer (same, above, below) and one of the
    layers that has a candidate is chosen uniformly.
    """
    locs = get_free_locations(sim, cell)
    if not locs:
        return None

    env = sim.environment
    z = cell.location[2]
    accuracy = cell.params['accuracy'].get_mu()
    max_val = sim.params['glucose_concentration'] * env.volume

    best = [None, None, None]
    scores = [0.0, 0.0, 0.0]

    for loc in locs:
        val = env.get_total_value('glucose', loc) / max_val
        gluc = accuracy * val + (1 - accuracy) * sim.rng.runif()
        score = gluc + count_living_targets(env, loc)

        if loc[2] == z:
            k = LAYER_SAME
        elif loc[2] == z + 1:
            k = LAYER_ABOVE
        else:
            k = LAYER_BELOW

        if best[k] is None or score > scores[k]:
            scores[k] = score
            best[k] = loc

    layers = [k for k in (LAYER_SAME, LAYER_ABOVE, LAYER_BELOW) if best[k] is not None]
    if len(layers) == 1:
        return best[layers[0]]
    return best[layers[int(sim.rng.runif() * len(layers))]]


def check_location_space(sim, loc, volume):
    """Whether a new agent of the given volume fits at loc."""
    env = sim.environment
    occupants = env.objects_at(loc)
    n = len(occupants)

    if n == 0:
        return True
    if n >= env.max_agents:
        return False
    return _fits(env, occupants, volume)
