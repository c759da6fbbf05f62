"""
Mass and energy balance for CAR T-cells.

Glucose is taken up across the cell surface and split between glycolysis
and oxidative phosphorylation. Activation and recent IL-2 exposure shift
the split toward glycolysis and raise uptake.
"""

from cell_states import IS_ACTIVATED, IS_PROLIFERATING, IS_MIGRATING, IS_DOUBLED

CELL_DENSITY = 1.3e-3       # ng/um^3
PYRU_PER_GLUC = 2           # pyruvate from one glucose
ENERGY_FROM_GLYC = 2        # ATP per glucose through glycolysis
ENERGY_FROM_OXPHOS = 15     # ATP per pyruvate through oxidative phosphorylation
OXY_PER_PYRU = 3            # oxygen consumed per pyruvate
NOISE_FLOOR = 1e-10

GLUCOSE = 0
PYRUVATE = 1
INTERNAL_NAMES = ['glucose', 'pyruvate']


class MetabolismModule:
    """
    Metabolism of one CAR T-cell. Heterogeneous rates are drawn from the
    cell's parameter distributions and the recentred distributions are
    written back for daughters.
    """

    def __init__(self, sim, cell, population):
        params = cell.params
        self.meta_pref = params['meta_pref'].next_double()
        self.meta_pref_il2 = params['meta_pref_il2'].next_double()
        self.meta_pref_active = params['meta_pref_active'].next_double()
        self.gluc_uptake_rate = params['gluc_uptake_rate'].next_double()
        self.gluc_uptake_rate_il2 = params['gluc_uptake_rate_il2'].next_double()
        self.gluc_uptake_rate_active = params['gluc_uptake_rate_active'].next_double()

        params['meta_pref'] = params['meta_pref'].update(self.meta_pref)
        params['meta_pref_il2'] = params['meta_pref_il2'].update(self.meta_pref_il2)
        params['meta_pref_active'] = params['meta_pref_active'].update(self.meta_pref_active)
        params['gluc_uptake_rate'] = params['gluc_uptake_rate'].update(self.gluc_uptake_rate)
        params['gluc_uptake_rate_il2'] = params['gluc_uptake_rate_il2'].update(self.gluc_uptake_rate_il2)
        params['gluc_uptake_rate_active'] = params['gluc_uptake_rate_active'].update(self.gluc_uptake_rate_active)

        self.frac_mass = population.get_param('frac_mass')
        self.frac_mass_active = population.get_param('frac_mass_active')
        self.ratio_gluc_to_pyru = population.get_param('ratio_gluc_to_pyru')
        self.lactate_rate = population.get_param('lactate_rate')
        self.autophagy_rate = population.get_param('autophagy_rate')
        self.meta_switch_delay = int(population.get_param('meta_switch_delay'))
        self.mass_to_gluc = population.get_param('mass_to_gluc')
        self.basal_energy = population.get_param('basal_energy')
        self.prolif_energy = population.get_param('prolif_energy')
        self.migra_energy = population.get_param('migra_energy')

        self.volume = cell.volume
        self.mass = cell.volume * CELL_DENSITY
        self.crit_mass = cell.crit_volume * CELL_DENSITY
        self.min_mass = self.crit_mass * population.get_param('min_mass_frac')
        self.energy = 0.0

        env = sim.environment
        self.f = self.volume_fraction(env, cell)
        glucose_ext = env.get_average_value('glucose', cell.location) * env.volume * self.f
        self.internal = [glucose_ext, glucose_ext * PYRU_PER_GLUC]
        self.uptake = {'glucose': 0.0, 'oxygen': 0.0}

    def get_internal(self, key):
        return self.internal[INTERNAL_NAMES.index(key)]

    @staticmethod
    def volume_fraction(env, cell):
        occupants = env.objects_at(cell.location)
        total = sum(a.volume for a in occupants)
        if cell not in occupants:
            total += cell.volume
        return cell.volume / total if total > 0 else 1.0

    def step(self, sim, cell, signaling):
        env = sim.environment
        loc = cell.location

        self.f = self.volume_fraction(env, cell)
        gluc_ext = env.get_average_value('glucose', loc) * env.volume * self.f
        oxy_ext = env.get_average_value('oxygen', loc) * env.volume * self.f

        proliferating = cell.flags[IS_PROLIFERATING]
        energy_cons = self.volume * self.basal_energy
        if proliferating:
            energy_cons += self.volume * self.prolif_energy
        if cell.flags[IS_MIGRATING]:
            energy_cons += self.volume * self.migra_energy
        energy_req = energy_cons - self.energy

        gluc_int = self.internal[GLUCOSE]
        pyru_int = self.internal[PYRUVATE]

        # IL-2 bound a fixed delay ago shifts preference and uptake
        prior = signaling.delayed_bound(self.meta_switch_delay)
        frac_il2 = prior / signaling.il2_receptors
        meta_pref = self.meta_pref + self.meta_pref_il2 * frac_il2
        gluc_uptake_rate = self.gluc_uptake_rate + self.gluc_uptake_rate_il2 * frac_il2
        frac_mass = self.frac_mass

        if cell.flags[IS_ACTIVATED] and signaling.active_ticker >= self.meta_switch_delay:
            meta_pref += self.meta_pref_active
            gluc_uptake_rate += self.gluc_uptake_rate_active
            frac_mass += self.frac_mass_active

        area = env.area * self.f
        surface_area = area * 2 + (self.volume / area) * env.perimeter(self.f)
        gluc_grad = gluc_ext / env.volume - gluc_int / self.volume
        if gluc_grad < NOISE_FLOOR:
            gluc_grad = 0.0
        gluc_uptake = gluc_uptake_rate * surface_area * gluc_grad
        gluc_int += gluc_uptake

        energy_gen_oxphos = 0.0
        energy_gen_glyc = 0.0
        gluc_req = meta_pref * energy_req / ENERGY_FROM_GLYC
        pyru_req = (1 - meta_pref) * energy_req / ENERGY_FROM_OXPHOS

        oxy_uptake = min(oxy_ext, pyru_req * OXY_PER_PYRU)
        if oxy_uptake < NOISE_FLOOR:
            oxy_uptake = 0.0

        # Oxidative phosphorylation on internal pyruvate
        oxy_in_pyru = oxy_uptake / OXY_PER_PYRU
        if pyru_int > oxy_in_pyru:
            energy_gen_oxphos += oxy_in_pyru * ENERGY_FROM_OXPHOS
            pyru_int -= oxy_in_pyru
        else:
            energy_gen_oxphos += pyru_int * ENERGY_FROM_OXPHOS
            oxy_uptake = pyru_int * OXY_PER_PYRU
            pyru_int = 0.0

        # Divert more glucose if oxidative phosphorylation fell short
        if self.energy <= 0 and gluc_int > 0:
            gluc_needed = -(self.energy - energy_cons + energy_gen_oxphos) / ENERGY_FROM_GLYC
            gluc_req = max(gluc_req, gluc_needed)

        if gluc_int > gluc_req:
            energy_gen_glyc += gluc_req * ENERGY_FROM_GLYC
            pyru_int += gluc_req * PYRU_PER_GLUC
            gluc_int -= gluc_req
        else:
            energy_gen_glyc += gluc_int * ENERGY_FROM_GLYC
            pyru_int += gluc_int * PYRU_PER_GLUC
            gluc_int = 0.0

        self.energy += energy_gen_oxphos + energy_gen_glyc - energy_cons
        if abs(self.energy) < NOISE_FLOOR:
            self.energy = 0.0

        # Grow and shrink are mutually exclusive
        if self.should_grow(proliferating):
            self.mass += frac_mass * (self.ratio_gluc_to_pyru * gluc_int
                                      + (1 - self.ratio_gluc_to_pyru) * pyru_int / PYRU_PER_GLUC) / self.mass_to_gluc
            gluc_int *= (1 - frac_mass * self.ratio_gluc_to_pyru)
            pyru_int *= (1 - frac_mass * (1 - self.ratio_gluc_to_pyru))
        elif self.should_shrink(proliferating):
            self.mass -= self.autophagy_rate
            gluc_int += self.autophagy_rate * self.mass_to_gluc

        cell.flags[IS_DOUBLED] = self.mass >= 2 * self.crit_mass
        self.volume = self.mass / CELL_DENSITY

        # Pyruvate lost as lactate
        pyru_int -= self.lactate_rate * pyru_int

        self.internal[GLUCOSE] = gluc_int
        self.internal[PYRUVATE] = pyru_int
        self.uptake['glucose'] = gluc_uptake
        self.uptake['oxygen'] = oxy_uptake

        self._update_environment(env, loc, gluc_ext, oxy_ext)

        cell.volume = self.volume
        cell.energy = self.energy

    def should_grow(self, proliferating):
        if self.energy < 0:
            return False
        return (proliferating and self.mass < 2 * self.crit_mass) or self.mass < 0.99 * self.crit_mass

    def should_shrink(self, proliferating):
        if self.energy < 0:
            return self.mass > self.min_mass
        return self.mass > 1.01 * self.crit_mass and not proliferating

    def _update_environment(self, env, loc, gluc_ext, oxy_ext):
        if gluc_ext > 0:
            env.scale_value('glucose', loc, max(0.0, 1.0 - self.uptake['glucose'] / gluc_ext))
        if oxy_ext > 0:
            env.scale_value('oxygen', loc, max(0.0, 1.0 - self.uptake['oxygen'] / oxy_ext))

    def split(self, daughter, f):
        """Give the daughter fraction f of energy, nutrients and mass."""
        daughter.energy = self.energy * f
        daughter.internal[GLUCOSE] = self.internal[GLUCOSE] * f
        daughter.internal[PYRUVATE] = self.internal[PYRUVATE] * f
        daughter.mass = self.mass * f
        daughter.volume = self.volume * f

        self.energy *= (1 - f)
        self.internal[GLUCOSE] *= (1 - f)
        self.internal[PYRUVATE] *= (1 - f)
        self.mass *= (1 - f)
        self.volume *= (1 - f)
