"""
Reference vehicle table: factory dimensions, weight, engine size and fuel
for common makes/models seen in RoRo quote requests.

Lookups are accent- and case-insensitive ("Série 7" == "serie 7").
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

from ..utils.names import strip_accents


@dataclass(frozen=True)
class VehicleSpec:
    brand: str
    model: str
    aliases: Tuple[str, ...]
    length_m: float
    width_m: float
    height_m: float
    weight_kg: float
    engine_cc: Optional[int] = None
    fuel_type: Optional[str] = None
    # aliases distinctive enough to identify the vehicle without its make
    standalone: Tuple[str, ...] = ()

    def reference_fields(self) -> Dict[str, object]:
        return {
            "vehicle.dimensions.length_m": self.length_m,
            "vehicle.dimensions.width_m": self.width_m,
            "vehicle.dimensions.height_m": self.height_m,
            "vehicle.weight_kg": self.weight_kg,
            "vehicle.engine_cc": self.engine_cc,
            "vehicle.fuel_type": self.fuel_type,
        }


BRAND_ALIASES: Dict[str, Tuple[str, ...]] = {
    "BMW": ("bmw",),
    "Mercedes-Benz": ("mercedes-benz", "mercedes benz", "mercedes"),
    "Toyota": ("toyota",),
    "Volkswagen": ("volkswagen", "vw"),
    "Audi": ("audi",),
    "Ford": ("ford",),
    "Nissan": ("nissan",),
    "Suzuki": ("suzuki",),
    "Bentley": ("bentley",),
    "Lexus": ("lexus",),
    "Land Rover": ("land rover", "landrover"),
    "Peugeot": ("peugeot",),
    "Renault": ("renault",),
    "Hyundai": ("hyundai",),
    "Kia": ("kia",),
    "Honda": ("honda",),
}

VEHICLES: List[VehicleSpec] = [
    VehicleSpec("BMW", "7 Series", ("7 series", "serie 7", "7er", "7-series", "750li", "740i"),
                5.098, 1.902, 1.467, 1830, 2998, "petrol"),
    VehicleSpec("BMW", "5 Series", ("5 series", "serie 5", "5er", "520d", "530i"),
                4.963, 1.868, 1.479, 1650, 1995, "diesel"),
    VehicleSpec("BMW", "3 Series", ("3 series", "serie 3", "3er", "320d", "320i"),
                4.709, 1.827, 1.442, 1545, 1998, "petrol"),
    VehicleSpec("BMW", "X5", ("x5",), 4.922, 2.004, 1.745, 2135, 2998, "diesel"),
    VehicleSpec("Mercedes-Benz", "S-Class", ("s-class", "s class", "classe s", "s-klasse", "s 500", "s500"),
                5.179, 1.954, 1.503, 2000, 2999, "petrol"),
    VehicleSpec("Mercedes-Benz", "E-Class", ("e-class", "e class", "classe e", "e-klasse"),
                4.949, 1.880, 1.468, 1750, 1991, "diesel"),
    VehicleSpec("Mercedes-Benz", "Sprinter", ("sprinter",), 5.932, 2.020, 2.680, 2100, 2143, "diesel",
                standalone=("sprinter",)),
    VehicleSpec("Toyota", "Land Cruiser", ("land cruiser", "landcruiser", "lc200", "lc300"),
                4.950, 1.980, 1.945, 2585, 3346, "diesel", standalone=("land cruiser", "landcruiser")),
    VehicleSpec("Toyota", "Hilux", ("hilux",), 5.325, 1.855, 1.815, 2095, 2393, "diesel",
                standalone=("hilux",)),
    VehicleSpec("Toyota", "Corolla", ("corolla",), 4.630, 1.780, 1.435, 1310, 1798, "hybrid"),
    VehicleSpec("Toyota", "RAV4", ("rav4", "rav 4"), 4.600, 1.855, 1.685, 1690, 2487, "hybrid"),
    VehicleSpec("Volkswagen", "Golf", ("golf",), 4.284, 1.789, 1.456, 1250, 1498, "petrol"),
    VehicleSpec("Volkswagen", "Transporter", ("transporter", "t6", "t5"), 4.904, 1.904, 1.990, 1900, 1968, "diesel",
                standalone=("transporter",)),
    VehicleSpec("Volkswagen", "Touareg", ("touareg",), 4.878, 1.984, 1.717, 2070, 2967, "diesel",
                standalone=("touareg",)),
    VehicleSpec("Audi", "A6", ("a6",), 4.939, 1.886, 1.457, 1700, 1984, "diesel"),
    VehicleSpec("Audi", "Q7", ("q7",), 5.063, 1.970, 1.741, 2135, 2967, "diesel"),
    VehicleSpec("Ford", "Transit", ("transit",), 5.531, 2.059, 2.550, 2200, 1995, "diesel"),
    VehicleSpec("Ford", "Ranger", ("ranger",), 5.370, 1.918, 1.884, 2200, 1996, "diesel"),
    VehicleSpec("Nissan", "Patrol", ("patrol",), 5.165, 1.995, 1.940, 2720, 5552, "petrol"),
    VehicleSpec("Suzuki", "Samurai", ("samurai",), 3.975, 1.535, 1.690, 960, 1298, "petrol",
                standalone=("samurai",)),
    VehicleSpec("Bentley", "Continental GT", ("continental gt", "continental"),
                4.850, 1.966, 1.405, 2244, 5950, "petrol"),
    VehicleSpec("Lexus", "LX", ("lx 600", "lx600", "lx 570", "lx570", "lx"), 5.100, 1.990, 1.885, 2600, 3445, "petrol"),
    VehicleSpec("Land Rover", "Range Rover", ("range rover",), 5.052, 2.047, 1.870, 2400, 2996, "diesel",
                standalone=("range rover",)),
    VehicleSpec("Land Rover", "Defender", ("defender",), 4.758, 1.996, 1.967, 2260, 2996, "diesel"),
    VehicleSpec("Peugeot", "208", ("208",), 4.055, 1.745, 1.430, 1090, 1199, "petrol"),
    VehicleSpec("Renault", "Clio", ("clio",), 4.053, 1.798, 1.440, 1100, 999, "petrol"),
    VehicleSpec("Hyundai", "Tucson", ("tucson",), 4.500, 1.865, 1.650, 1570, 1598, "petrol"),
    VehicleSpec("Kia", "Sportage", ("sportage",), 4.515, 1.865, 1.645, 1560, 1598, "petrol"),
    VehicleSpec("Honda", "CR-V", ("cr-v", "crv"), 4.600, 1.855, 1.680, 1620, 1993, "hybrid"),
]

# heavy/other equipment recognised by type when no make/model is known
EQUIPMENT_TYPES: List[Tuple[str, str]] = [
    (r"motor\s*grader", "Motorgrader"),
    (r"grader", "Grader"),
    (r"excavator|graafmachine|bagger|pelleteuse", "Excavator"),
    (r"bulldozer", "Bulldozer"),
    (r"wheel\s*loader", "Wheel Loader"),
    (r"loader|chargeuse", "Loader"),
    (r"crane|kraan|grue", "Crane"),
    (r"dump\s*truck", "Dump Truck"),
    (r"truck|camion|vrachtwagen|lkw", "Truck"),
    (r"forklift|heftruck|chariot\s+[eé]l[eé]vateur", "Forklift"),
    (r"tractor|tracteur|traktor", "Tractor"),
    (r"caravan|camper|motorhome|camping[\s-]?car", "Caravan"),
    (r"trailer|remorque|anh[aä]nger", "Trailer"),
    (r"motorcycle|motorbike|moto", "Motorcycle"),
    (r"boat|bateau", "Boat"),
]


def fold(text: str) -> str:
    """Lowercase and strip accents one character at a time, keeping offsets aligned."""
    out = []
    for ch in text or "":
        f = strip_accents(ch).lower()
        out.append(f if len(f) == 1 else ch)
    return "".join(out)


def brand_aliases() -> Iterator[Tuple[str, str]]:
    """(folded alias, canonical brand), longest alias first."""
    pairs = [(alias, brand) for brand, aliases in BRAND_ALIASES.items() for alias in aliases]
    return iter(sorted(pairs, key=lambda p: len(p[0]), reverse=True))


def model_aliases(brand: str) -> List[Tuple[str, VehicleSpec]]:
    pairs = [(fold(alias), spec) for spec in VEHICLES if spec.brand == brand for alias in spec.aliases]
    return sorted(pairs, key=lambda p: len(p[0]), reverse=True)


def standalone_aliases() -> List[Tuple[str, VehicleSpec]]:
    pairs = [(fold(alias), spec) for spec in VEHICLES for alias in spec.standalone]
    return sorted(pairs, key=lambda p: len(p[0]), reverse=True)


def find(brand: Optional[str], model: Optional[str]) -> Optional[VehicleSpec]:
    """Reference entry for a brand/model pair, matching model names or aliases."""
    if not brand or not model:
        return None
    b = fold(brand).strip()
    canonical = next((name for alias, name in brand_aliases() if alias == b), None)
    if canonical is None:
        return None
    m = " ".join(fold(model).split())
    for spec in VEHICLES:
        if spec.brand != canonical:
            continue
        if m == fold(spec.model) or m in (fold(a) for a in spec.aliases):
            return spec
    return None
