class WeightConverter:
    """Utility for converting between kg and lb and resolving relative loads."""

    KG_TO_LB = 2.20462

    @staticmethod
    def kg_to_lb(kg: float) -> float:
        return round(kg * WeightConverter.KG_TO_LB, 2)

    @staticmethod
    def lb_to_kg(lb: float) -> float:
        return round(lb / WeightConverter.KG_TO_LB, 2)

    @staticmethod
    def convert(weight: float, from_unit: str, to_unit: str) -> float:
        """Convert ``weight`` between ``"kg"`` and ``"lb"``."""
        src = from_unit.lower()
        dst = to_unit.lower()
        for unit in (src, dst):
            if unit not in ("kg", "lb"):
                raise ValueError(f"unsupported unit: {unit}")
        if src == dst:
            return weight
        if src == "kg":
            return WeightConverter.kg_to_lb(weight)
        return WeightConverter.lb_to_kg(weight)

    @staticmethod
    def load_from_percentage(one_rep_max: float, percentage: float) -> float:
        """Return the absolute load for ``percentage`` of ``one_rep_max``."""
        if one_rep_max <= 0:
            raise ValueError("one_rep_max must be positive")
        if percentage <= 0 or percentage > 100:
            raise ValueError("percentage must be within (0, 100]")
        return round(one_rep_max * percentage / 100, 2)
