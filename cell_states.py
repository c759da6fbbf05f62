"""
Cell type codes, flag indices and shared error types for the CAR T-cell model.
"""

# Cell types (0=neutral, 1=apoptotic, ...)
TYPE_NEUTRAL = 0
TYPE_APOPT = 1
TYPE_MIGRA = 2
TYPE_PROLI = 3
TYPE_SENES = 4
TYPE_NECRO = 5
TYPE_CYTOT = 6
TYPE_STIMU = 7
TYPE_EXHAU = 8
TYPE_ANERG = 9
TYPE_STARV = 10
TYPE_PAUSE = 11
TYPE_QUIES = 12  # tissue cells only

TYPE_NAMES = {
    TYPE_NEUTRAL: 'neutral',
    TYPE_APOPT: 'apoptotic',
    TYPE_MIGRA: 'migratory',
    TYPE_PROLI: 'proliferative',
    TYPE_SENES: 'senescent',
    TYPE_NECRO: 'necrotic',
    TYPE_CYTOT: 'cytotoxic',
    TYPE_STIMU: 'stimulatory',
    TYPE_EXHAU: 'exhausted',
    TYPE_ANERG: 'anergic',
    TYPE_STARV: 'starved',
    TYPE_PAUSE: 'paused',
    TYPE_QUIES: 'quiescent',
}

# Flag indices into the per-agent boolean flag array
IS_MIGRATING = 0
IS_PROLIFERATING = 1
IS_ACTIVATED = 2
IS_BOUNDANTIGEN = 3
IS_BOUNDSELFRECEPTOR = 4
IS_DOUBLED = 5
NUM_FLAGS = 6

# Cell codes (what kind of agent occupies a location)
CODE_H_CELL = 0  # healthy tissue
CODE_C_CELL = 1  # cancer
CODE_S_CELL = 2  # cancer stem
CODE_T_CELL = 3  # CAR T-cell
NUM_CODES = 4

TISSUE_CODES = (CODE_H_CELL, CODE_C_CELL, CODE_S_CELL)

# CAR T-cell subtypes
SUBTYPE_CD4 = 4  # helper / stimulatory
SUBTYPE_CD8 = 8  # lytic / cytotoxic
SUBTYPE_NONE = 0


class InvariantViolation(RuntimeError):
    """Raised when the model reaches a state that should be impossible."""

    def __init__(self, message, agent_id=None, tick=None):
        details = []
        if agent_id is not None:
            details.append(f"agent={agent_id}")
        if tick is not None:
            details.append(f"tick={tick}")
        if details:
            message = f"{message} [{', '.join(details)}]"
        super().__init__(message)
        self.agent_id = agent_id
        self.tick = tick
