"""
Static KPI formula catalog and metric alias table.

Both are immutable module constants used as defaults; services receive them
through their constructors so tests can inject smaller tables.

Formula strings are descriptive text for the inference step. Only the
bootstrap rules in `services.derived_metrics` are executed locally.
"""

from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType

from healthmetrics.domain.errors import ConfigurationError
from healthmetrics.domain.models import KPIDefinition


def _kpi(
    kpi_id: str, name: str, category: str, formula: str, metrics: Iterable[str], description: str
) -> KPIDefinition:
    return KPIDefinition(
        id=kpi_id,
        name=name,
        category=category,
        formula=formula,
        required_metrics=frozenset(metrics),
        description=description,
    )


DEFAULT_KPI_DEFINITIONS: tuple[KPIDefinition, ...] = (
    # Lipid panel
    _kpi("lipid_tc_hdl", "TC/HDL Ratio", "Lipid", "tc/hdl", ["tc", "hdl"], "CVD risk; <4 optimal"),
    _kpi("lipid_ldl_hdl", "LDL/HDL Ratio", "Lipid", "ldl/hdl", ["ldl", "hdl"], "Atherogenic risk indicator"),
    _kpi("lipid_tg_hdl", "TG/HDL Ratio", "Lipid", "tg/hdl", ["tg", "hdl"], "Insulin resistance marker"),
    _kpi("lipid_non_hdl", "Non-HDL Cholesterol", "Lipid", "tc-hdl", ["tc", "hdl"], "All atherogenic cholesterol"),
    _kpi("lipid_aip", "Atherogenic Index", "Lipid", "log10(tg/hdl)", ["tg", "hdl"], "Atherogenic risk; <0.1 ideal"),
    _kpi("lipid_remnant", "Remnant Cholesterol", "Lipid", "tc-(ldl+hdl)", ["tc", "ldl", "hdl"], "TG-rich lipoprotein indicator"),
    _kpi("lipid_apob_apoa1", "ApoB/ApoA1 Ratio", "Lipid", "apob/apoa1", ["apob", "apoa1"], "Strong predictor of CVD risk"),
    _kpi("lipid_ldlp", "LDL Particle Number", "Lipid", "ldl_p", ["ldl_p"], "Reflects LDL particle burden"),
    _kpi("lipid_sdldl_pct", "Small Dense LDL %", "Lipid", "sdldl/ldl_total*100", ["sdldl", "ldl_total"], "Proportion of small dense LDL"),
    _kpi("lipid_hdl2_hdl3", "HDL2/HDL3 Ratio", "Lipid", "hdl2/hdl3", ["hdl2", "hdl3"], "HDL subtype quality"),
    _kpi("lipid_nonhdl_hdl", "Non-HDL/HDL Ratio", "Lipid", "nonhdl/hdl", ["nonhdl", "hdl"], "Overall atherogenic ratio"),
    _kpi("lipid_tg_nonhdl", "TG/Non-HDL Ratio", "Lipid", "tg/nonhdl", ["tg", "nonhdl"], "Residual risk marker"),
    _kpi("lipid_tg_ldl", "TG/LDL Ratio", "Lipid", "tg/ldl", ["tg", "ldl"], "Small-dense LDL tendency"),
    _kpi("lipid_tc_nonhdl", "TC/Non-HDL Ratio", "Lipid", "tc/nonhdl", ["tc", "nonhdl"], "Cholesterol distribution"),
    _kpi("lipid_lpa", "Lp(a)", "Lipid", "lpa", ["lpa"], "Genetic cardiovascular risk factor"),
    _kpi("lipid_ggt_hdl", "GGT/HDL Ratio", "Lipid", "ggt/hdl", ["ggt", "hdl"], "Oxidative and hepatic lipid stress"),
    # Metabolic
    _kpi("met_homa_ir", "HOMA-IR", "Metabolic", "(glucose*insulin)/405", ["glucose", "insulin"], "Insulin resistance; high=bad"),
    _kpi("met_quicki", "QUICKI", "Metabolic", "1/(log(insulin)+log(glucose))", ["insulin", "glucose"], "Insulin sensitivity; high=good"),
    _kpi("met_tyg", "TyG Index", "Metabolic", "ln((tg*glucose)/2)", ["tg", "glucose"], "IR marker from TG & glucose"),
    _kpi("met_homa_b", "HOMA-%B", "Metabolic", "(360*insulin)/(glucose-63)", ["insulin", "glucose"], "Beta-cell function"),
    _kpi("met_homa_s", "HOMA-%S", "Metabolic", "1/homa_ir*100", ["homa_ir"], "Insulin sensitivity %"),
    _kpi("met_mca", "McAuley Index", "Metabolic", "exp(2.63-0.28*ln(insulin)-0.31*ln(tg))", ["insulin", "tg"], "IR estimate"),
    _kpi("met_mets_ir", "METS-IR", "Metabolic", "(ln((2*glucose)+tg)*bmi)/ln(hdl)", ["glucose", "tg", "bmi", "hdl"], "Modern IR index"),
    _kpi("met_tygpro", "TyG Product", "Metabolic", "tg*glucose", ["tg", "glucose"], "Simplified metabolic load"),
    _kpi("met_disposition", "Disposition Index", "Metabolic", "insulin_sensitivity*insulin_secretion", ["insulin_sensitivity", "insulin_secretion"], "Beta-cell compensation"),
    _kpi("met_glucose_var", "Glucose Variability", "Metabolic", "sd(glucose_series)", ["glucose_series"], "Glycemic stability"),
    _kpi("met_mean_glucose", "Mean Glucose", "Metabolic", "avg(glucose_series)", ["glucose_series"], "Average glucose level"),
    _kpi("met_glucose_hba1c", "Glucose/HbA1c Ratio", "Metabolic", "glucose/hba1c", ["glucose", "hba1c"], "Short vs long-term glycemia"),
    # Liver
    _kpi("liver_ast_alt", "De Ritis Ratio", "Liver", "ast/alt", ["ast", "alt"], "Liver injury pattern"),
    _kpi("liver_apri", "APRI", "Liver", "(ast/uln_ast)*100/plt", ["ast", "plt"], "Fibrosis predictor"),
    _kpi("liver_fib4", "FIB-4 Index", "Liver", "(age*ast)/(plt*sqrt(alt))", ["age", "ast", "plt", "alt"], "Liver fibrosis score"),
    _kpi("liver_fib5", "FIB-5 Index", "Liver", "(age*ast)/(plt*albumin)", ["age", "ast", "plt", "albumin"], "Alternative fibrosis score"),
    _kpi("liver_nafld_f", "NAFLD Fibrosis Score", "Liver", "-1.675+0.037*age+0.094*bmi+1.13*ifg+0.99*(ast/alt)-0.013*plt-0.66*albumin", ["age", "bmi", "glucose", "ast", "alt", "plt", "albumin"], "Non-invasive fatty liver fibrosis"),
    _kpi("liver_steatosis", "Hepatic Steatosis Index", "Liver", "8*alt/ast+bmi+tg+glucose", ["alt", "ast", "bmi", "tg", "glucose"], "Fatty liver estimate"),
    _kpi("liver_lfi", "Liver Fat Index", "Liver", "10.43+0.13*bmi+0.3*tg+0.5*ggt", ["bmi", "tg", "ggt"], "Hepatic fat load"),
    _kpi("liver_alt_ggt", "ALT/GGT Ratio", "Liver", "alt/ggt", ["alt", "ggt"], "Liver dysfunction pattern"),
    _kpi("liver_ggt_alt", "GGT/ALT Ratio", "Liver", "ggt/alt", ["ggt", "alt"], "Cholestatic vs hepatocellular pattern"),
    _kpi("liver_alp_alt", "ALP/ALT Ratio", "Liver", "alp/alt", ["alp", "alt"], "R-factor companion ratio"),
    # Renal and urine
    _kpi("renal_bun_cr", "BUN/Creatinine Ratio", "Renal", "bun/creatinine", ["bun", "creatinine"], "Hydration and renal function"),
    _kpi("renal_cysc_cr", "CystatinC/Creatinine Ratio", "Renal", "cystatin_c/creatinine", ["cystatin_c", "creatinine"], "Kidney sensitivity index"),
    _kpi("renal_urea_cr", "Urea/Creatinine Ratio", "Renal", "urea/creatinine", ["urea", "creatinine"], "Hydration and catabolic balance"),
    _kpi("renal_egfr", "eGFR (CKD-EPI 2021)", "Renal", "ckd_epi_2021(creatinine, age, sex)", ["creatinine", "age"], "Filtration rate estimate"),
    _kpi("urine_acr", "Albumin/Creatinine Ratio", "Urine", "u_albumin/u_creatinine", ["u_albumin", "u_creatinine"], "Kidney damage marker"),
    _kpi("renal_ca_cr", "Urine Ca/Creatinine Ratio", "Renal", "u_ca/u_creatinine", ["u_ca", "u_creatinine"], "Hypercalciuria screen"),
    _kpi("renal_na_k", "Urine Na/K Ratio", "Renal", "u_na/u_k", ["u_na", "u_k"], "Sodium-potassium balance"),
    # Inflammation
    _kpi("infl_nlr", "NLR", "Inflammation", "neut/lymph", ["neut", "lymph"], "Inflammatory stress"),
    _kpi("infl_plr", "PLR", "Inflammation", "plt/lymph", ["plt", "lymph"], "Inflammation prognosis"),
    _kpi("infl_mlr", "MLR", "Inflammation", "mono/lymph", ["mono", "lymph"], "Inflammatory balance"),
    _kpi("infl_sii", "SII", "Inflammation", "(plt*neut)/lymph", ["plt", "neut", "lymph"], "Systemic immune-inflammation index"),
    _kpi("infl_siri", "SIRI", "Inflammation", "(neut*mono)/lymph", ["neut", "mono", "lymph"], "Alternative inflammation index"),
    _kpi("infl_lmr", "LMR", "Inflammation", "lymph/mono", ["lymph", "mono"], "Immune suppression risk"),
    _kpi("infl_crp_alb", "CRP/Albumin", "Inflammation", "crp/albumin", ["crp", "albumin"], "Inflammation severity"),
    _kpi("infl_esr_crp", "ESR/CRP Ratio", "Inflammation", "esr/crp", ["esr", "crp"], "Chronic inflammation ratio"),
    # Iron and hematology
    _kpi("iron_tsat", "Transferrin Saturation", "Iron", "(iron/tibc)*100", ["iron", "tibc"], "Iron status"),
    _kpi("iron_ferr_tsat", "Ferritin/TSAT Ratio", "Iron", "ferritin/tsat", ["ferritin", "tsat"], "Differentiates anemia types"),
    _kpi("iron_ferr_crp", "Ferritin/CRP Ratio", "Iron", "ferritin/crp", ["ferritin", "crp"], "Iron stores vs acute phase"),
    _kpi("iron_ret_he", "Ret-He", "Iron", "ret_he", ["ret_he"], "Current iron availability"),
    _kpi("hema_rdw_plt", "RDW/Platelet Ratio", "Hematology", "rdw/plt", ["rdw", "plt"], "Inflammation and anemia marker"),
    _kpi("hema_mpv_plt", "MPV/Platelet Ratio", "Hematology", "mpv/plt", ["mpv", "plt"], "Platelet activation indicator"),
    # Vitamins and nutrition
    _kpi("vit_d_ca", "VitD/Calcium Ratio", "Vitamins", "vitd/ca", ["vitd", "ca"], "Vitamin D adequacy vs calcium"),
    _kpi("vit_b12_hcy", "B12/Homocysteine", "Vitamins", "b12/hcy", ["b12", "hcy"], "Methylation efficiency"),
    _kpi("vit_b12_folate", "B12/Folate Ratio", "Vitamins", "b12/folate", ["b12", "folate"], "One-carbon balance"),
    _kpi("fatty_omega3", "Omega-3 Index", "Nutrition", "(epa+dpa+dha)*100/total_fatty_acids", ["epa", "dpa", "dha", "total_fatty_acids"], "Cardioprotective index"),
    _kpi("fatty_epa_aa", "EPA/AA Ratio", "Nutrition", "epa/aa", ["epa", "aa"], "Inflammation balance"),
    _kpi("fatty_n6_n3", "n-6/n-3 Ratio", "Nutrition", "n6/n3", ["n6", "n3"], "Inflammatory lipid balance"),
    # Minerals and electrolytes
    _kpi("min_zn_cu", "Zn/Cu Ratio", "Trace", "zn/cu", ["zn", "cu"], "Oxidative balance"),
    _kpi("min_ca_p", "Ca/P Ratio", "Mineral", "ca/p", ["ca", "p"], "Bone mineral balance"),
    _kpi("min_mg_k", "Mg/K Ratio", "Electrolyte", "mg/k", ["mg", "k"], "Neuromuscular stability"),
    _kpi("ele_na_k", "Na/K Ratio", "Electrolyte", "na/k", ["na", "k"], "BP regulation"),
    _kpi("ele_na_cl", "Na/Cl Ratio", "Electrolyte", "na/cl", ["na", "cl"], "Acid-base balance"),
    _kpi("ele_anion_gap", "Anion Gap", "Electrolyte", "na-(cl+hco3)", ["na", "cl", "hco3"], "Unmeasured anion load"),
    # Oxidative stress
    _kpi("oxid_ua_cr", "Uric Acid/Creatinine", "Oxidative", "ua/creatinine", ["ua", "creatinine"], "Purine metabolism and kidney link"),
    _kpi("oxid_gsh_gssg", "GSH/GSSG", "Oxidative", "gsh/gssg", ["gsh", "gssg"], "Cellular redox status"),
    _kpi("oxid_index", "Oxidative Stress Index", "Oxidative", "mda/antiox_cap", ["mda", "antiox_cap"], "Systemic oxidative balance"),
    # Body composition
    _kpi("body_bmi", "BMI", "Body", "weight/(height^2)", ["weight", "height"], "Mass/height index"),
    _kpi("body_whr", "WHR", "Body", "waist/hip", ["waist", "hip"], "Central adiposity"),
    _kpi("body_whtr", "WHtR", "Body", "waist/height", ["waist", "height"], "Cardiometabolic risk"),
    _kpi("body_ffmi", "FFMI", "Body", "lean_mass/(height^2)", ["lean_mass", "height"], "Lean mass normalized"),
    _kpi("body_fmi", "FMI", "Body", "fat_mass/(height^2)", ["fat_mass", "height"], "Fat mass normalized"),
    _kpi("body_lfr", "Lean/Fat Ratio", "Body", "lean_mass/fat_mass", ["lean_mass", "fat_mass"], "Muscle vs fat balance"),
    _kpi("body_mqi", "Muscle Quality Index", "Body", "strength/lean_mass", ["strength", "lean_mass"], "Muscle efficiency"),
    _kpi("body_smi", "Skeletal Muscle Index", "Body", "skeletal_muscle_mass/(height^2)", ["skeletal_muscle_mass", "height"], "Sarcopenia screening"),
    _kpi("body_phase", "Phase Angle", "Body", "atan(xc/r)*180/pi", ["xc", "r"], "Cellular integrity marker"),
    _kpi("body_prot_min", "Protein/Mineral Ratio", "Body", "protein/mineral", ["protein", "mineral"], "Tissue quality indicator"),
    # Performance
    _kpi("met_bmr_eff", "BMR Efficiency", "Metabolic", "bmr/lean_mass", ["bmr", "lean_mass"], "Metabolic output per kg lean mass"),
    _kpi("perf_ex_eff", "Exercise Efficiency", "Performance", "exercise_kcal/exercise_time", ["exercise_kcal", "exercise_time"], "Training intensity"),
    _kpi("perf_hrv", "HRV Index", "Performance", "rmssd_or_sdnn", ["hrv"], "Autonomic balance"),
    _kpi("perf_recovery", "Recovery HR Index", "Performance", "(hr_peak-hr_1min)/hr_peak", ["hr_peak", "hr_1min"], "Cardiovascular recovery"),
    _kpi("perf_vo2_bmi", "VO2max/BMI", "Performance", "vo2max/bmi", ["vo2max", "bmi"], "Normalized aerobic capacity"),
    # Hormones, thyroid and stress
    _kpi("horm_fai", "Free Androgen Index", "Hormone", "(testo/shbg)*100", ["testo", "shbg"], "Free testosterone estimate"),
    _kpi("horm_fbi", "Bioavailable Testosterone Index", "Hormone", "testo*(1-shbg_binding)/100", ["testo", "shbg"], "Active testosterone fraction"),
    _kpi("horm_t_e_ratio", "Testosterone/Estradiol", "Hormone", "testo/e2", ["testo", "e2"], "Androgen-estrogen balance"),
    _kpi("horm_ft3_rt3", "FT3/RT3 Ratio", "Thyroid", "ft3/rt3", ["ft3", "rt3"], "Thyroid conversion efficiency"),
    _kpi("thyr_t3_t4", "T3/T4 Ratio", "Thyroid", "ft3/ft4", ["ft3", "ft4"], "Conversion efficiency"),
    _kpi("thyr_tsh_index", "TSH Index", "Thyroid", "log(tsh)+0.1345*ft4", ["tsh", "ft4"], "Pituitary-thyroid feedback"),
    _kpi("horm_cort_dhea", "Cortisol/DHEA", "Stress", "cortisol/dhea", ["cortisol", "dhea"], "Stress balance"),
    _kpi("horm_dhea_t", "DHEA/Testosterone", "Stress", "dhea/testo", ["dhea", "testo"], "Anabolic reserve"),
    _kpi("horm_cort_acth", "Cortisol/ACTH", "Stress", "cortisol/acth", ["cortisol", "acth"], "HPA axis responsiveness"),
    _kpi("horm_car", "Cortisol Awakening Response", "Stress", "cort_30min/cort_baseline", ["cort_30min", "cort_baseline"], "Morning stress adaptation"),
)


# Free-text label (lowercased, single-spaced) -> canonical key
DEFAULT_METRIC_ALIASES: Mapping[str, str] = MappingProxyType(
    {
        # Lipids
        "total cholesterol": "tc",
        "total_cholesterol": "tc",
        "cholesterol": "tc",
        "hdl cholesterol": "hdl",
        "hdl_cholesterol": "hdl",
        "hdl-c": "hdl",
        "ldl cholesterol": "ldl",
        "ldl_cholesterol": "ldl",
        "ldl-c": "ldl",
        "triglycerides": "tg",
        "triglyceride": "tg",
        "trigs": "tg",
        "non-hdl cholesterol": "nonhdl",
        "non_hdl": "nonhdl",
        "apolipoprotein b": "apob",
        "apolipoprotein a1": "apoa1",
        "lp(a)": "lpa",
        "lipoprotein a": "lpa",
        # Metabolic
        "blood glucose": "glucose",
        "fasting glucose": "glucose",
        "fasting insulin": "insulin",
        "hemoglobin a1c": "hba1c",
        "a1c": "hba1c",
        "homa-ir": "homa_ir",
        # Liver
        "sgot": "ast",
        "aspartate aminotransferase": "ast",
        "sgpt": "alt",
        "alanine aminotransferase": "alt",
        "gamma-gt": "ggt",
        "gamma glutamyl transferase": "ggt",
        "alkaline phosphatase": "alp",
        "alb": "albumin",
        # Renal
        "blood urea nitrogen": "bun",
        "cystatin c": "cystatin_c",
        "uric acid": "ua",
        "urine albumin": "u_albumin",
        "urine creatinine": "u_creatinine",
        # CBC
        "neutrophils": "neut",
        "neutrophil": "neut",
        "lymphocytes": "lymph",
        "lymphocyte": "lymph",
        "monocytes": "mono",
        "monocyte": "mono",
        "platelets": "plt",
        "platelet": "plt",
        "platelet count": "plt",
        # Inflammation
        "c-reactive protein": "crp",
        "hs-crp": "crp",
        # Iron
        "transferrin saturation": "tsat",
        # Vitamins
        "vitamin d": "vitd",
        "25-oh vitamin d": "vitd",
        "vitamin b12": "b12",
        "homocysteine": "hcy",
        "folic acid": "folate",
        "calcium": "ca",
        "phosphorus": "p",
        "phosphate": "p",
        # Body composition
        "w": "weight",
        "body weight": "weight",
        "h": "height",
        "body height": "height",
        "stature": "height",
        "waist circumference": "waist",
        "hip circumference": "hip",
        "body fat percentage": "fat_pct",
        "body fat": "fat_pct",
        "lean mass": "lean_mass",
        "lean body mass": "lean_mass",
        "fat mass": "fat_mass",
        "skeletal muscle mass": "skeletal_muscle_mass",
        "body mass index": "bmi",
        # Electrolytes
        "sodium": "na",
        "potassium": "k",
        "chloride": "cl",
        "magnesium": "mg",
        "bicarbonate": "hco3",
        # Hormones
        "testosterone": "testo",
        "estradiol": "e2",
        "free t3": "ft3",
        "free t4": "ft4",
        "reverse t3": "rt3",
        # Trace minerals
        "zinc": "zn",
        "copper": "cu",
        # Fatty acids
        "arachidonic acid": "aa",
        "omega-6": "n6",
        "omega-3": "n3",
        # Performance
        "vo2 max": "vo2max",
        "heart rate variability": "hrv",
    }
)


class KPICatalog:
    """
    Immutable, ordered registry of KPI definitions.

    Order is preserved so downstream prompts are reproducible.
    Raises ConfigurationError on an empty catalog or duplicate ids.
    """

    def __init__(self, definitions: Iterable[KPIDefinition]) -> None:
        self._definitions: tuple[KPIDefinition, ...] = tuple(definitions)
        if not self._definitions:
            raise ConfigurationError("KPI catalog must contain at least one definition")

        by_id: dict[str, KPIDefinition] = {}
        for definition in self._definitions:
            if definition.id in by_id:
                raise ConfigurationError(f"Duplicate KPI id in catalog: {definition.id}")
            if not definition.required_metrics:
                raise ConfigurationError(f"KPI {definition.id} declares no required metrics")
            by_id[definition.id] = definition
        self._by_id = MappingProxyType(by_id)

    def __iter__(self) -> Iterator[KPIDefinition]:
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, kpi_id: object) -> bool:
        return kpi_id in self._by_id

    @property
    def definitions(self) -> tuple[KPIDefinition, ...]:
        return self._definitions

    def get(self, kpi_id: str) -> KPIDefinition | None:
        return self._by_id.get(kpi_id)

    def referenced_metrics(self) -> frozenset[str]:
        """Every canonical key any KPI requires."""
        return frozenset().union(*(d.required_metrics for d in self._definitions))


def default_catalog() -> KPICatalog:
    return KPICatalog(DEFAULT_KPI_DEFINITIONS)
