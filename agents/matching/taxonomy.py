"""
Matching Taxonomy
Controlled vocabulary and lookup tables shared by the matching engines.

All tables are module-level constants built once at import time. Grant data
arrives with free-text eligibility labels, categories and locations; the
helpers here map that text onto the closed enums a UserProfile uses.
"""
import re
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping, Optional


# =============================================================================
# Enumerations
# =============================================================================


class EntityType(str, Enum):
    """Applicant organization category."""

    INDIVIDUAL = "individual"
    NONPROFIT = "nonprofit"
    SMALL_BUSINESS = "small_business"
    FOR_PROFIT = "for_profit"
    EDUCATIONAL = "educational"
    GOVERNMENT = "government"
    TRIBAL = "tribal"


class IndustryTag(str, Enum):
    """User-selected focus area."""

    AGRICULTURE = "agriculture"
    ARTS_CULTURE = "arts_culture"
    BUSINESS = "business"
    CLIMATE = "climate"
    COMMUNITY = "community"
    EDUCATION = "education"
    HEALTH = "health"
    HOUSING = "housing"
    INFRASTRUCTURE = "infrastructure"
    NONPROFIT = "nonprofit"
    RESEARCH = "research"
    TECHNOLOGY = "technology"
    WORKFORCE = "workforce"
    YOUTH = "youth"


class SizeBand(str, Enum):
    """Organization headcount band."""

    SOLO = "solo"
    MICRO = "micro"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class Stage(str, Enum):
    """Organization maturity."""

    IDEA = "idea"
    EARLY = "early"
    GROWTH = "growth"
    ESTABLISHED = "established"


class BudgetRange(str, Enum):
    """Annual operating budget band."""

    UNDER_50K = "under_50k"
    FROM_50K_TO_100K = "50k_100k"
    FROM_100K_TO_250K = "100k_250k"
    FROM_250K_TO_500K = "250k_500k"
    FROM_500K_TO_1M = "500k_1m"
    FROM_1M_TO_5M = "1m_5m"
    OVER_5M = "over_5m"


class GrantSizeCategory(str, Enum):
    """Award size bucket."""

    MICRO = "micro"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class FundingType(str, Enum):
    GRANT = "grant"
    LOAN = "loan"
    FORGIVABLE_LOAN = "forgivable_loan"
    REBATE = "rebate"
    TAX_CREDIT = "tax_credit"
    COST_SHARE = "cost_share"
    CONTRACT = "contract"
    AWARD = "award"


class PurposeTag(str, Enum):
    """What grant money may be spent on."""

    EQUIPMENT = "equipment"
    HIRING = "hiring"
    R_AND_D = "r_and_d"
    SUSTAINABILITY = "sustainability"
    EXPANSION = "expansion"
    TRAINING = "training"
    WORKING_CAPITAL = "working_capital"
    INFRASTRUCTURE = "infrastructure"
    MARKETING = "marketing"
    TECHNOLOGY = "technology"
    LAND_ACQUISITION = "land_acquisition"
    CONSTRUCTION = "construction"
    RENOVATION = "renovation"
    OPERATING = "operating"
    PLANNING = "planning"
    TECHNICAL_ASSISTANCE = "technical_assistance"


class GeographyScope(str, Enum):
    """Location type attached to a grant."""

    NATIONAL = "national"
    STATE = "state"
    REGION = "region"


class ConfidenceLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class MatchTier(str, Enum):
    """Display bucket for a numeric match score."""

    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    LOW = "low"


# =============================================================================
# Policy Constants
# =============================================================================

# A grant that lists no locations is treated as if it had this scope.
DEFAULT_SCOPE_WHEN_UNSPECIFIED = GeographyScope.NATIONAL

# A profile without industry tags passes the industry filter (at reduced confidence).
AUTO_PASS_WHEN_NO_INDUSTRY_TAGS = True

# A grant that declares no eligible entity types is open to every applicant.
AUTO_PASS_WHEN_NO_ENTITY_RESTRICTION = True

MAX_SUGGESTIONS = 2
MAX_MATCH_REASONS = 5


# =============================================================================
# Entity Types
# =============================================================================

ENTITY_TYPE_LABELS: Mapping[EntityType, str] = MappingProxyType({
    EntityType.INDIVIDUAL: "Individual/Homeowner",
    EntityType.NONPROFIT: "Nonprofit Organization",
    EntityType.SMALL_BUSINESS: "Small Business",
    EntityType.FOR_PROFIT: "For-Profit Business",
    EntityType.EDUCATIONAL: "Educational Institution",
    EntityType.GOVERNMENT: "Government Entity",
    EntityType.TRIBAL: "Tribal Organization",
})

_E = EntityType

# Normalized eligibility phrase -> entity types it admits.
ENTITY_SYNONYMS: Mapping[str, frozenset[EntityType]] = MappingProxyType({
    # individuals
    "individual": frozenset({_E.INDIVIDUAL}),
    "individuals": frozenset({_E.INDIVIDUAL}),
    "homeowner": frozenset({_E.INDIVIDUAL}),
    "homeowners": frozenset({_E.INDIVIDUAL}),
    "resident": frozenset({_E.INDIVIDUAL}),
    "residents": frozenset({_E.INDIVIDUAL}),
    "artist": frozenset({_E.INDIVIDUAL}),
    "researcher": frozenset({_E.INDIVIDUAL}),
    # nonprofits
    "nonprofit": frozenset({_E.NONPROFIT}),
    "nonprofits": frozenset({_E.NONPROFIT}),
    "non profit": frozenset({_E.NONPROFIT}),
    "not for profit": frozenset({_E.NONPROFIT}),
    "nonprofit 501(c)(3)": frozenset({_E.NONPROFIT}),
    "501(c)(3)": frozenset({_E.NONPROFIT}),
    "501c3": frozenset({_E.NONPROFIT}),
    "charitable organization": frozenset({_E.NONPROFIT}),
    "faith based": frozenset({_E.NONPROFIT}),
    "community based organization": frozenset({_E.NONPROFIT}),
    "ngo": frozenset({_E.NONPROFIT}),
    # small business
    "small business": frozenset({_E.SMALL_BUSINESS}),
    "small businesses": frozenset({_E.SMALL_BUSINESS}),
    "startup": frozenset({_E.SMALL_BUSINESS}),
    "agricultural producer": frozenset({_E.SMALL_BUSINESS}),
    "farmer": frozenset({_E.SMALL_BUSINESS}),
    "farmers": frozenset({_E.SMALL_BUSINESS}),
    "rancher": frozenset({_E.SMALL_BUSINESS}),
    "ranchers": frozenset({_E.SMALL_BUSINESS}),
    "beginning farmer": frozenset({_E.SMALL_BUSINESS}),
    "veteran owned": frozenset({_E.SMALL_BUSINESS}),
    "woman owned": frozenset({_E.SMALL_BUSINESS}),
    "women owned": frozenset({_E.SMALL_BUSINESS}),
    "minority owned": frozenset({_E.SMALL_BUSINESS}),
    "disabled owned": frozenset({_E.SMALL_BUSINESS}),
    # for-profit
    "for profit": frozenset({_E.FOR_PROFIT}),
    "for profit business": frozenset({_E.FOR_PROFIT}),
    "for profit organization": frozenset({_E.FOR_PROFIT}),
    "business": frozenset({_E.FOR_PROFIT}),
    "businesses": frozenset({_E.FOR_PROFIT}),
    "corporation": frozenset({_E.FOR_PROFIT}),
    "private sector": frozenset({_E.FOR_PROFIT}),
    "cooperative": frozenset({_E.FOR_PROFIT, _E.NONPROFIT}),
    # education
    "educational institution": frozenset({_E.EDUCATIONAL}),
    "institution of higher education": frozenset({_E.EDUCATIONAL}),
    "higher education": frozenset({_E.EDUCATIONAL}),
    "university": frozenset({_E.EDUCATIONAL}),
    "universities": frozenset({_E.EDUCATIONAL}),
    "college": frozenset({_E.EDUCATIONAL}),
    "school": frozenset({_E.EDUCATIONAL}),
    "schools": frozenset({_E.EDUCATIONAL}),
    "school district": frozenset({_E.EDUCATIONAL, _E.GOVERNMENT}),
    "k 12": frozenset({_E.EDUCATIONAL}),
    # government
    "government": frozenset({_E.GOVERNMENT}),
    "government entity": frozenset({_E.GOVERNMENT}),
    "state government": frozenset({_E.GOVERNMENT}),
    "local government": frozenset({_E.GOVERNMENT}),
    "county": frozenset({_E.GOVERNMENT}),
    "city": frozenset({_E.GOVERNMENT}),
    "municipal": frozenset({_E.GOVERNMENT}),
    "municipality": frozenset({_E.GOVERNMENT}),
    "special district": frozenset({_E.GOVERNMENT}),
    "public housing authority": frozenset({_E.GOVERNMENT}),
    # tribal
    "tribal": frozenset({_E.TRIBAL}),
    "tribe": frozenset({_E.TRIBAL}),
    "tribes": frozenset({_E.TRIBAL}),
    "tribal organization": frozenset({_E.TRIBAL}),
    "tribal government": frozenset({_E.TRIBAL, _E.GOVERNMENT}),
    "native american": frozenset({_E.TRIBAL}),
    "indian tribe": frozenset({_E.TRIBAL}),
    "alaska native": frozenset({_E.TRIBAL}),
})

# Partial credit a profile of type K earns on a grant open to type V.
# Any pair listed here also passes the eligibility entity filter.
ENTITY_ADJACENCY: Mapping[EntityType, Mapping[EntityType, float]] = MappingProxyType({
    _E.INDIVIDUAL: MappingProxyType({}),
    _E.NONPROFIT: MappingProxyType({}),
    _E.SMALL_BUSINESS: MappingProxyType({_E.FOR_PROFIT: 0.75}),
    _E.FOR_PROFIT: MappingProxyType({_E.SMALL_BUSINESS: 0.75}),
    _E.EDUCATIONAL: MappingProxyType({_E.NONPROFIT: 0.6}),
    _E.GOVERNMENT: MappingProxyType({}),
    _E.TRIBAL: MappingProxyType({_E.GOVERNMENT: 0.6}),
})

# Phrases in eligibility text that explicitly rule an entity type out.
ENTITY_EXCLUSION_PATTERNS: Mapping[EntityType, tuple[str, ...]] = MappingProxyType({
    _E.INDIVIDUAL: ("individuals are not eligible", "not available to individuals"),
    _E.NONPROFIT: ("nonprofits are not eligible", "nonprofit organizations are not eligible"),
    _E.SMALL_BUSINESS: ("businesses are not eligible", "small businesses are not eligible"),
    _E.FOR_PROFIT: (
        "for profit organizations are not eligible",
        "for profit entities are not eligible",
        "businesses are not eligible",
    ),
    _E.EDUCATIONAL: ("universities are not eligible", "schools are not eligible"),
    _E.GOVERNMENT: ("government entities are not eligible", "government agencies are not eligible"),
    _E.TRIBAL: (),
})

# Phrases in eligibility or description text that rule a state out; {state} is
# the lowercased state name.
STATE_EXCLUSION_TEMPLATES: tuple[str, ...] = (
    "excluding {state}",
    "except {state}",
    "not available in {state}",
    "does not include {state}",
)


# =============================================================================
# Industry Tags
# =============================================================================

INDUSTRY_LABELS: Mapping[IndustryTag, str] = MappingProxyType({
    IndustryTag.AGRICULTURE: "Agriculture & Farming",
    IndustryTag.ARTS_CULTURE: "Arts & Culture",
    IndustryTag.BUSINESS: "Business & Entrepreneurship",
    IndustryTag.CLIMATE: "Climate & Environment",
    IndustryTag.COMMUNITY: "Community Development",
    IndustryTag.EDUCATION: "Education",
    IndustryTag.HEALTH: "Health & Wellness",
    IndustryTag.HOUSING: "Housing",
    IndustryTag.INFRASTRUCTURE: "Infrastructure",
    IndustryTag.NONPROFIT: "Nonprofit Operations",
    IndustryTag.RESEARCH: "Research & Science",
    IndustryTag.TECHNOLOGY: "Technology & Innovation",
    IndustryTag.WORKFORCE: "Workforce Development",
    IndustryTag.YOUTH: "Youth & Families",
})

_I = IndustryTag

INDUSTRY_POSITIVE_KEYWORDS: Mapping[IndustryTag, tuple[str, ...]] = MappingProxyType({
    _I.AGRICULTURE: (
        "agriculture", "agricultural", "farm", "farmer", "farming", "ranch", "rancher",
        "rural development", "rural community", "rural business", "crop", "livestock",
        "cattle", "poultry", "usda", "food production", "food supply", "agribusiness", "soil",
        "irrigation", "harvest", "seed", "grain", "dairy", "organic farm",
        "land conservation", "pasture", "grazing", "horticulture", "commodity",
        "farmland", "beginning farmer", "young farmer", "food security",
        "vineyard", "orchard", "aquaculture", "fishery", "forestry", "timber",
        "woodland", "agroforestry", "pollinator", "bee", "cooperative extension", "nrcs",
        "farm service", "conservation reserve", "eqip",
    ),
    _I.ARTS_CULTURE: (
        "arts", "art", "culture", "cultural", "museum", "heritage", "creative", "humanities",
        "artistic", "theater", "theatre", "music", "visual arts", "performing arts",
        "nea", "neh", "gallery", "exhibition", "literary", "dance",
        "symphony", "orchestra", "opera", "film", "media arts", "folk art", "craft",
        "historic preservation", "historical",
    ),
    _I.BUSINESS: (
        "business", "entrepreneur", "commerce", "economic development", "sbir", "sttr",
        "small business", "startup", "commercialization", "sba", "export", "trade",
        "manufacturing", "industry", "enterprise", "venture", "micro-enterprise",
        "minority business", "women-owned", "veteran-owned", "disadvantaged business",
        "hubzone", "procurement", "wosb",
    ),
    _I.CLIMATE: (
        "climate", "environment", "environmental", "energy", "conservation", "sustainability",
        "epa", "renewable", "clean energy", "carbon", "emissions", "green", "solar",
        "wind energy", "geothermal", "recycling", "waste reduction", "pollution",
        "water quality", "air quality", "ecosystem", "habitat", "wildlife",
        "resilience", "adaptation", "mitigation", "electric vehicle", "ev",
    ),
    _I.COMMUNITY: (
        "community", "community development", "community service", "neighborhood", "civic",
        "regional development", "block grant", "cdbg", "local government", "municipal",
        "town", "village", "revitalization", "placemaking", "main street",
        "economic development", "community foundation", "community action",
    ),
    _I.EDUCATION: (
        "education", "school", "learning", "training", "academic", "student",
        "teacher", "curriculum", "educational", "k-12", "higher education", "university",
        "college", "classroom", "literacy", "stem education", "stem", "scholarship",
        "tuition", "early childhood", "head start", "preschool", "vocational",
    ),
    _I.HEALTH: (
        "health", "medical", "wellness", "nih", "clinical", "disease", "mental health",
        "healthcare", "hospital", "patient", "treatment", "therapy", "nursing",
        "public health", "medicine", "biomedical", "behavioral health", "substance abuse",
        "opioid", "telehealth", "rural health", "community health", "hrsa",
        "maternal", "child health", "nutrition", "food access",
    ),
    _I.HOUSING: (
        "housing", "hud", "shelter", "homelessness", "affordable housing",
        "rent", "mortgage", "homeowner", "residential", "apartment", "dwelling",
        "low-income housing", "section 8", "lihtc", "home repair", "weatherization",
        "fair housing", "housing authority", "multifamily",
    ),
    _I.INFRASTRUCTURE: (
        "infrastructure", "transportation", "broadband", "water system", "transit",
        "highway", "bridge", "road", "utility", "sewer", "electric grid",
        "telecommunications", "fiber", "connectivity", "wastewater", "stormwater",
        "public works", "capital improvement", "dot", "fhwa",
    ),
    _I.NONPROFIT: (
        "nonprofit", "non-profit", "charitable", "philanthropy", "501c", "501(c)",
        "voluntary", "civil society", "ngo", "foundation", "giving", "charitable organization",
        "tax-exempt", "capacity building", "organizational development",
    ),
    _I.RESEARCH: (
        "research", "science", "nsf", "study", "r&d", "scientific",
        "laboratory", "experiment", "investigation", "academic research", "basic research",
        "applied research", "innovation", "discovery", "nih", "doe", "darpa",
    ),
    _I.TECHNOLOGY: (
        "technology", "tech", "digital", "software", "cyber", "artificial intelligence",
        "data", "computing", "information technology", "internet", "broadband",
        "telecommunications", "innovation", "ai", "machine learning", "blockchain",
        "cybersecurity", "it", "saas", "cloud",
    ),
    _I.WORKFORCE: (
        "workforce", "job training", "employment", "career", "labor", "worker",
        "apprenticeship", "vocational", "skills training", "job placement",
        "unemployment", "retraining", "wioa", "workforce development", "dol",
        "career pathways", "work-based learning",
    ),
    _I.YOUTH: (
        "youth", "children", "child", "family", "families", "juvenile", "teen",
        "adolescent", "young people", "kids", "afterschool", "after-school",
        "mentoring", "foster", "adoption", "child welfare", "acf", "head start",
    ),
})

# Phrases that mark a grant as belonging to some other field entirely.
INDUSTRY_EXCLUSION_KEYWORDS: Mapping[IndustryTag, tuple[str, ...]] = MappingProxyType({
    _I.AGRICULTURE: (
        "cancer treatment", "cancer therapy", "chemotherapy", "tumor", "oncology",
        "hiv treatment", "aids research", "hiv/aids", "alzheimer", "dementia",
        "clinical trial", "drug trial", "pharmaceutical development", "drug development",
        "patient care", "hospital bed", "nursing care", "surgery", "surgical",
        "mental illness", "psychiatric", "addiction treatment", "substance abuse treatment",
        "cybersecurity", "cyber attack", "video game", "gaming", "social media platform",
        "app development", "mobile app", "website development",
        "museum exhibit", "art gallery", "theater production", "symphony", "opera",
        "film festival", "dance performance", "visual arts exhibition",
        "urban renewal", "metropolitan", "subway system", "city transit", "metro area",
        "teacher professional development", "k-12 teacher",
        "weapons system", "missile defense", "military combat",
    ),
    _I.HEALTH: (
        "crop production", "livestock management", "farm equipment", "irrigation system",
        "timber harvest", "mining operation", "oil extraction", "coal mining",
        "road construction", "bridge building", "highway maintenance",
    ),
    _I.TECHNOLOGY: (
        "livestock", "crop yield", "farm equipment", "agricultural production",
        "nursing home", "patient care facility", "medical equipment maintenance",
        "art installation", "museum curation",
    ),
    _I.ARTS_CULTURE: (
        "clinical trial", "drug development", "medical device", "patient outcome",
        "farm equipment", "livestock", "crop production", "agricultural chemicals",
        "road construction", "water treatment", "sewage",
    ),
})

# Grant category label (as published) -> industry tags it belongs to.
CATEGORY_TO_INDUSTRY: Mapping[str, tuple[IndustryTag, ...]] = MappingProxyType({
    "agriculture": (_I.AGRICULTURE,),
    "agriculture & food": (_I.AGRICULTURE,),
    "agricultural": (_I.AGRICULTURE,),
    "food and nutrition": (_I.AGRICULTURE, _I.HEALTH),
    "rural development": (_I.AGRICULTURE, _I.COMMUNITY),
    "arts": (_I.ARTS_CULTURE,),
    "arts & culture": (_I.ARTS_CULTURE,),
    "humanities": (_I.ARTS_CULTURE,),
    "cultural heritage": (_I.ARTS_CULTURE,),
    "business": (_I.BUSINESS,),
    "business & entrepreneurship": (_I.BUSINESS,),
    "small business": (_I.BUSINESS,),
    "economic development": (_I.BUSINESS, _I.COMMUNITY),
    "commerce": (_I.BUSINESS,),
    "environment": (_I.CLIMATE,),
    "environmental": (_I.CLIMATE,),
    "climate": (_I.CLIMATE,),
    "energy": (_I.CLIMATE,),
    "conservation": (_I.CLIMATE, _I.AGRICULTURE),
    "sustainability": (_I.CLIMATE,),
    "community development": (_I.COMMUNITY,),
    "community": (_I.COMMUNITY,),
    "regional development": (_I.COMMUNITY,),
    "education": (_I.EDUCATION,),
    "training": (_I.EDUCATION, _I.WORKFORCE),
    "academic": (_I.EDUCATION, _I.RESEARCH),
    "health": (_I.HEALTH,),
    "healthcare": (_I.HEALTH,),
    "medical": (_I.HEALTH,),
    "public health": (_I.HEALTH,),
    "mental health": (_I.HEALTH,),
    "housing": (_I.HOUSING,),
    "affordable housing": (_I.HOUSING,),
    "infrastructure": (_I.INFRASTRUCTURE,),
    "transportation": (_I.INFRASTRUCTURE,),
    "broadband": (_I.INFRASTRUCTURE, _I.TECHNOLOGY),
    "nonprofit": (_I.NONPROFIT,),
    "philanthropy": (_I.NONPROFIT,),
    "research": (_I.RESEARCH,),
    "science": (_I.RESEARCH,),
    "innovation": (_I.RESEARCH, _I.TECHNOLOGY),
    "technology": (_I.TECHNOLOGY,),
    "it": (_I.TECHNOLOGY,),
    "cybersecurity": (_I.TECHNOLOGY,),
    "workforce": (_I.WORKFORCE,),
    "employment": (_I.WORKFORCE,),
    "job training": (_I.WORKFORCE,),
    "youth": (_I.YOUTH,),
    "children": (_I.YOUTH,),
    "families": (_I.YOUTH,),
})

# Search terms that name a category must be backed by one of these keywords.
STRICT_CATEGORY_KEYWORDS: Mapping[str, tuple[str, ...]] = MappingProxyType({
    "agriculture": (
        "agriculture", "agricultural", "farm", "farmer", "farming", "ranch", "rancher",
        "rural", "crop", "livestock", "cattle", "poultry", "usda", "food production",
        "agribusiness", "soil", "irrigation", "harvest", "seed", "grain", "dairy",
        "organic farm", "pasture", "grazing", "horticulture", "farmland",
        "beginning farmer", "young farmer", "vineyard", "orchard", "aquaculture",
        "fishery", "forestry", "timber", "woodland", "agroforestry", "pollinator",
        "cooperative extension",
    ),
    "small business": (
        "small business", "sbir", "sttr", "entrepreneur", "startup", "sba",
        "business development", "commercialization", "enterprise", "venture",
        "minority business", "women-owned", "veteran-owned",
    ),
    "technology": (
        "technology", "tech", "digital", "software", "cyber", "artificial intelligence",
        "data", "computing", "information technology", "internet", "broadband",
        "telecommunications", "innovation", "sbir", "sttr",
    ),
    "climate": (
        "climate", "environment", "environmental", "energy", "conservation", "sustainability",
        "epa", "renewable", "clean energy", "carbon", "emissions", "green", "solar",
        "wind energy", "geothermal", "recycling", "waste reduction", "pollution",
    ),
    "education": (
        "education", "school", "learning", "training", "academic", "student",
        "teacher", "curriculum", "educational", "k-12", "higher education", "university",
        "college", "classroom", "literacy", "stem education",
    ),
    "health": (
        "health", "medical", "wellness", "nih", "clinical", "disease", "mental health",
        "healthcare", "hospital", "patient", "treatment", "therapy", "nursing",
        "public health", "medicine", "biomedical", "pharmaceutical",
    ),
    "research": (
        "research", "science", "nsf", "study", "r&d", "scientific",
        "laboratory", "experiment", "investigation", "academic research",
    ),
})


# =============================================================================
# Geography
# =============================================================================

US_STATES: Mapping[str, str] = MappingProxyType({
    "AL": "Alabama", "AK": "Alaska", "AZ": "Arizona", "AR": "Arkansas",
    "CA": "California", "CO": "Colorado", "CT": "Connecticut", "DE": "Delaware",
    "FL": "Florida", "GA": "Georgia", "HI": "Hawaii", "ID": "Idaho",
    "IL": "Illinois", "IN": "Indiana", "IA": "Iowa", "KS": "Kansas",
    "KY": "Kentucky", "LA": "Louisiana", "ME": "Maine", "MD": "Maryland",
    "MA": "Massachusetts", "MI": "Michigan", "MN": "Minnesota", "MS": "Mississippi",
    "MO": "Missouri", "MT": "Montana", "NE": "Nebraska", "NV": "Nevada",
    "NH": "New Hampshire", "NJ": "New Jersey", "NM": "New Mexico", "NY": "New York",
    "NC": "North Carolina", "ND": "North Dakota", "OH": "Ohio", "OK": "Oklahoma",
    "OR": "Oregon", "PA": "Pennsylvania", "RI": "Rhode Island", "SC": "South Carolina",
    "SD": "South Dakota", "TN": "Tennessee", "TX": "Texas", "UT": "Utah",
    "VT": "Vermont", "VA": "Virginia", "WA": "Washington", "WV": "West Virginia",
    "WI": "Wisconsin", "WY": "Wyoming", "DC": "District of Columbia",
    "PR": "Puerto Rico", "VI": "Virgin Islands", "GU": "Guam",
    "AS": "American Samoa", "MP": "Northern Mariana Islands",
})

_STATE_NAMES_TO_CODES = {name.lower(): code for code, name in US_STATES.items()}

# Census regions, plus a few common informal groupings.
US_REGIONS: Mapping[str, frozenset[str]] = MappingProxyType({
    "northeast": frozenset({"CT", "ME", "MA", "NH", "RI", "VT", "NJ", "NY", "PA"}),
    "new england": frozenset({"CT", "ME", "MA", "NH", "RI", "VT"}),
    "midwest": frozenset({"IL", "IN", "MI", "OH", "WI", "IA", "KS", "MN", "MO", "NE", "ND", "SD"}),
    "south": frozenset({
        "DE", "FL", "GA", "MD", "NC", "SC", "VA", "DC", "WV",
        "AL", "KY", "MS", "TN", "AR", "LA", "OK", "TX",
    }),
    "southeast": frozenset({"AL", "FL", "GA", "KY", "MS", "NC", "SC", "TN", "VA", "WV"}),
    "southwest": frozenset({"AZ", "NM", "OK", "TX"}),
    "west": frozenset({
        "AZ", "CO", "ID", "MT", "NV", "NM", "UT", "WY",
        "AK", "CA", "HI", "OR", "WA",
    }),
    "pacific northwest": frozenset({"OR", "WA", "ID"}),
    "appalachia": frozenset({"AL", "GA", "KY", "MD", "MS", "NY", "NC", "OH", "PA", "SC", "TN", "VA", "WV"}),
    "delta": frozenset({"AL", "AR", "IL", "KY", "LA", "MS", "MO", "TN"}),
})

NATIONAL_LOCATION_VALUES = frozenset({"national", "nationwide", "all states", "usa", "us", "united states"})


# =============================================================================
# Amounts and Budgets
# =============================================================================

GRANT_SIZE_RANGES: Mapping[GrantSizeCategory, tuple[float, float]] = MappingProxyType({
    GrantSizeCategory.MICRO: (0, 10_000),
    GrantSizeCategory.SMALL: (10_000, 50_000),
    GrantSizeCategory.MEDIUM: (50_000, 250_000),
    GrantSizeCategory.LARGE: (250_000, float("inf")),
})

BUDGET_TO_GRANT_SIZE: Mapping[BudgetRange, frozenset[GrantSizeCategory]] = MappingProxyType({
    BudgetRange.UNDER_50K: frozenset({GrantSizeCategory.MICRO, GrantSizeCategory.SMALL}),
    BudgetRange.FROM_50K_TO_100K: frozenset({
        GrantSizeCategory.MICRO, GrantSizeCategory.SMALL, GrantSizeCategory.MEDIUM,
    }),
    BudgetRange.FROM_100K_TO_250K: frozenset({GrantSizeCategory.SMALL, GrantSizeCategory.MEDIUM}),
    BudgetRange.FROM_250K_TO_500K: frozenset({
        GrantSizeCategory.SMALL, GrantSizeCategory.MEDIUM, GrantSizeCategory.LARGE,
    }),
    BudgetRange.FROM_500K_TO_1M: frozenset({GrantSizeCategory.MEDIUM, GrantSizeCategory.LARGE}),
    BudgetRange.FROM_1M_TO_5M: frozenset({GrantSizeCategory.MEDIUM, GrantSizeCategory.LARGE}),
    BudgetRange.OVER_5M: frozenset({GrantSizeCategory.LARGE}),
})

SMALL_BUDGETS = frozenset({BudgetRange.UNDER_50K, BudgetRange.FROM_50K_TO_100K})

_P = PurposeTag

GOALS_TO_PURPOSE: Mapping[str, frozenset[PurposeTag]] = MappingProxyType({
    "equipment": frozenset({_P.EQUIPMENT, _P.TECHNOLOGY}),
    "expansion": frozenset({_P.EXPANSION, _P.WORKING_CAPITAL, _P.CONSTRUCTION}),
    "sustainability": frozenset({_P.SUSTAINABILITY, _P.EQUIPMENT, _P.RENOVATION}),
    "workforce": frozenset({_P.HIRING, _P.TRAINING}),
    "research": frozenset({_P.R_AND_D, _P.TECHNOLOGY, _P.PLANNING}),
    "marketing": frozenset({_P.MARKETING, _P.EXPANSION}),
    "facilities": frozenset({_P.CONSTRUCTION, _P.RENOVATION, _P.LAND_ACQUISITION}),
    "operations": frozenset({_P.OPERATING, _P.WORKING_CAPITAL}),
    "planning": frozenset({_P.PLANNING, _P.TECHNICAL_ASSISTANCE}),
})


# =============================================================================
# Scoring
# =============================================================================

# Maximum points per factor; sums to 100.
SCORING_WEIGHTS: Mapping[str, int] = MappingProxyType({
    "entity_match": 20,
    "industry_match": 45,
    "geography_match": 10,
    "budget_match": 10,
    "purpose_match": 10,
    "preferences_match": 5,
})

INDUSTRY_CATEGORY_HIT_POINTS = 15
INDUSTRY_KEYWORD_HIT_POINTS = 5
INDUSTRY_MAX_KEYWORD_HITS_PER_TAG = 3

TIER_THRESHOLDS: tuple[tuple[int, MatchTier], ...] = (
    (80, MatchTier.EXCELLENT),
    (60, MatchTier.GOOD),
    (40, MatchTier.FAIR),
)

TIER_LABELS: Mapping[MatchTier, str] = MappingProxyType({
    MatchTier.EXCELLENT: "Excellent Match",
    MatchTier.GOOD: "Good Match",
    MatchTier.FAIR: "Fair Match",
    MatchTier.LOW: "Low Match",
})

# (quality below, highest total score allowed)
QUALITY_SCORE_CAPS: tuple[tuple[float, int], ...] = (
    (30, 59),
    (60, 79),
)


# =============================================================================
# Helpers
# =============================================================================

WHOLE_WORD_KEYWORD_MAX_LENGTH = 3
WORD_START_KEYWORD_MAX_LENGTH = 5

_SEPARATORS = re.compile(r"[-_/]+")
_WHITESPACE = re.compile(r"\s+")


def normalize_tag(value: str) -> str:
    """Lowercase, turn -, _ and / into spaces, collapse whitespace."""
    return _WHITESPACE.sub(" ", _SEPARATORS.sub(" ", value.lower())).strip()


def normalize_state(value: Optional[str]) -> Optional[str]:
    """Return the USPS code for a state code or name, or None if unknown."""
    if not value:
        return None
    candidate = value.strip()
    if candidate.upper() in US_STATES:
        return candidate.upper()
    return _STATE_NAMES_TO_CODES.get(candidate.lower())


def keyword_in_text(text: str, keyword: str) -> bool:
    """
    Case-insensitive containment check.

    Keywords of three characters or fewer must match a whole word so that
    "ai" does not match "maintain" and "bee" does not match "been". Keywords
    of up to five characters must start a word: "ranch" matches "ranchers"
    but not "branch".
    """
    keyword = keyword.lower()
    if len(keyword) <= WHOLE_WORD_KEYWORD_MAX_LENGTH:
        return re.search(rf"(?<![a-z0-9]){re.escape(keyword)}(?![a-z0-9])", text.lower()) is not None
    if len(keyword) <= WORD_START_KEYWORD_MAX_LENGTH:
        return re.search(rf"(?<![a-z0-9]){re.escape(keyword)}", text.lower()) is not None
    return keyword in text.lower()


def matched_keywords(text: str, keywords: Iterable[str]) -> list[str]:
    """Distinct keywords found in text, in table order."""
    seen: list[str] = []
    for keyword in keywords:
        if keyword not in seen and keyword_in_text(text, keyword):
            seen.append(keyword)
    return seen


def contains_keywords(text: str, keywords: Iterable[str]) -> bool:
    return any(keyword_in_text(text, kw) for kw in keywords)


def count_keyword_matches(text: str, keywords: Iterable[str]) -> int:
    return len(matched_keywords(text, keywords))


def canonical_entity_types(tag: str) -> frozenset[EntityType]:
    """
    Map a free-text eligibility label onto entity types.

    Exact enum values and synonym phrases are tried first; otherwise every
    synonym phrase contained in the label contributes its types, so
    "Nonprofit organizations with 501(c)(3) status" maps to nonprofit.
    """
    normalized = normalize_tag(tag)
    if not normalized:
        return frozenset()

    for entity in EntityType:
        if normalized == normalize_tag(entity.value):
            return frozenset({entity})

    if normalized in ENTITY_SYNONYMS:
        return ENTITY_SYNONYMS[normalized]

    found: set[EntityType] = set()
    for phrase, entities in ENTITY_SYNONYMS.items():
        if keyword_in_text(normalized, phrase):
            found.update(entities)
    return frozenset(found)


def industries_for_category(category: str) -> frozenset[IndustryTag]:
    """Industry tags a published category label belongs to."""
    normalized = category.strip().lower()
    if normalized in CATEGORY_TO_INDUSTRY:
        return frozenset(CATEGORY_TO_INDUSTRY[normalized])
    tag_form = normalize_tag(category)
    return frozenset(
        tag for tag in IndustryTag
        if tag_form == normalize_tag(tag.value) or normalize_tag(tag.value) in tag_form.split(" ")
    )


def get_grant_size_category(
    amount_min: Optional[float],
    amount_max: Optional[float],
) -> GrantSizeCategory:
    """Bucket a grant by its largest stated amount."""
    amount = amount_max or amount_min or 0
    if amount < 10_000:
        return GrantSizeCategory.MICRO
    if amount < 50_000:
        return GrantSizeCategory.SMALL
    if amount < 250_000:
        return GrantSizeCategory.MEDIUM
    return GrantSizeCategory.LARGE


def format_funding_display(
    amount_min: Optional[float],
    amount_max: Optional[float],
    amount_text: Optional[str] = None,
) -> str:
    if amount_text:
        return amount_text
    if amount_min and amount_max and amount_min != amount_max:
        return f"${amount_min:,.0f} - ${amount_max:,.0f}"
    if amount_max:
        return f"Up to ${amount_max:,.0f}"
    if amount_min:
        return f"From ${amount_min:,.0f}"
    return "Varies"


def format_deadline_display(deadline: Optional[datetime], now: datetime) -> str:
    """Human-readable deadline relative to now."""
    if deadline is None:
        return "Rolling"
    days = (deadline - now).days
    if days < 0:
        return "Closed"
    if days == 0:
        return "Due today"
    if days == 1:
        return "Due tomorrow"
    if days <= 30:
        return f"{days} days left"
    return deadline.strftime("%b %d, %Y")
