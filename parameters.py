"""
Heterogeneous parameter distributions and per-population configuration.

Each agent draws its own value of a heterogeneous parameter once, at
construction, and hands daughters a distribution recentred on that value.
"""

from scipy import stats

from cell_states import (CODE_T_CELL, CODE_C_CELL, CODE_S_CELL, CODE_H_CELL,
                         SUBTYPE_CD4, SUBTYPE_CD8, SUBTYPE_NONE)

# Per-agent CAR T-cell parameters that drift between generations
CART_HERITABLE = [
    'senes_frac', 'exhau_frac', 'anerg_frac', 'proli_frac',
    'energy_threshold', 'accuracy', 'death_age_avg', 'division_potential',
    'max_antigen_binding', 'cars', 'self_receptors',
    'meta_pref', 'meta_pref_il2', 'meta_pref_active',
    'gluc_uptake_rate', 'gluc_uptake_rate_il2', 'gluc_uptake_rate_active',
]

# Biophysical constants: agents read the population mean, daughters inherit
# the distribution unchanged
CART_FIXED = [
    'search_ability', 'car_affinity', 'car_alpha', 'car_beta',
    'self_receptor_affinity', 'self_alpha', 'self_beta', 'contact_frac',
]

TISSUE_HERITABLE = ['car_antigens', 'self_targets']
TISSUE_FIXED = ['max_height']

FRACTION_PARAMS = {'senes_frac', 'accuracy', 'meta_pref', 'exhau_frac',
                   'anerg_frac', 'proli_frac'}


class Parameter:
    """Normal distribution with sigma = |mu| * heterogeneity."""

    def __init__(self, mu, heterogeneity, is_fraction, rng):
        self.mu = mu
        self.heterogeneity = heterogeneity
        self.is_fraction = is_fraction
        self.rng = rng

    def next_double(self):
        sigma = abs(self.mu) * self.heterogeneity
        if sigma == 0:
            # Keep one draw per call so the stream position does not depend on mu
            self.rng.runif()
            value = self.mu
        else:
            value = self.rng.normal(self.mu, sigma)

        if self.is_fraction:
            value = min(max(value, 0.0), 1.0)
        return value

    def next_int(self):
        return int(round(self.next_double()))

    def get_mu(self):
        return self.mu

    def get_mu_int(self):
        return int(self.mu)

    def update(self, value):
        """Distribution recentred on value, for daughter cells."""
        return Parameter(value, self.heterogeneity, self.is_fraction, self.rng)

    def __repr__(self):
        return f"Parameter(mu={self.mu}, het={self.heterogeneity}, frac={self.is_fraction})"


class Population:
    """
    Configuration of one cell population.

    Population-level constants are looked up by name with get_param; the
    heterogeneous distributions for new agents come from get_params.
    The subtype tag decides which CAR T-cell behaviour an agent gets.
    """

    def __init__(self, index, name, code, subtype, settings, rng):
        self.index = index
        self.name = name
        self.code = code
        self.subtype = subtype
        self.settings = settings
        self.rng = rng

        heterogeneity = settings['heterogeneity']
        if code == CODE_T_CELL:
            names = CART_HERITABLE + CART_FIXED
            self.volume_avg = settings['t_cell_vol_avg']
            self.volume_range = settings['t_cell_vol_range']
            self.age_min = settings['t_cell_age_min']
            self.age_max = settings['t_cell_age_max']
            self.death_avg = settings['death_age_avg_t']
            self.death_range = settings['death_age_range_t']
        else:
            names = TISSUE_HERITABLE + TISSUE_FIXED
            self.volume_avg = settings['tissue_vol_avg']
            self.volume_range = settings['tissue_vol_range']
            self.age_min = settings['tissue_age_min']
            self.age_max = settings['tissue_age_max']
            self.death_avg = settings['death_age_avg_tissue']
            self.death_range = settings['death_age_range_tissue']

        self.params = {}
        for key in names:
            self.params[key] = Parameter(settings[key], heterogeneity,
                                         key in FRACTION_PARAMS, rng)

    def get_param(self, name):
        return self.settings[name]

    def get_params(self):
        return dict(self.params)

    def death_probability(self, age):
        """Cumulative probability of death by the given age."""
        return float(stats.norm.cdf(age, loc=self.death_avg, scale=self.death_range))

    def next_volume(self):
        return max(self.rng.normal(self.volume_avg, self.volume_range), 1.0)

    def next_age(self):
        return int(self.rng.uniform(self.age_min, self.age_max))

    @property
    def is_cart(self):
        return self.code == CODE_T_CELL and self.subtype in (SUBTYPE_CD4, SUBTYPE_CD8)


def build_populations(params, rng):
    """
    Create the populations used by the simulation from the flat params dict.
    Returns a list indexed by population index.
    """
    specs = [
        ('healthy', CODE_H_CELL, SUBTYPE_NONE),
        ('tumor', CODE_C_CELL, SUBTYPE_NONE),
        ('stem', CODE_S_CELL, SUBTYPE_NONE),
        ('cd4', CODE_T_CELL, SUBTYPE_CD4),
        ('cd8', CODE_T_CELL, SUBTYPE_CD8),
    ]

    populations = []
    for index, (name, code, subtype) in enumerate(specs):
        # Per-population values, e.g. params['healthy_overrides'] = {'car_antigens': 500}
        settings = dict(params)
        settings.update(params.get(f'{name}_overrides', {}))
        populations.append(Population(index, name, code, subtype, settings, rng))

    return populations


# Population indices as laid out by build_populations
POP_HEALTHY = 0
POP_TUMOR = 1
POP_STEM = 2
POP_CD4 = 3
POP_CD8 = 4
