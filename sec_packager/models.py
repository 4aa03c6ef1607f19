"""Data models for SEC filings, provider snapshots and the package manifest."""

from datetime import date, datetime, timedelta
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator
from pydantic.alias_generators import to_camel


TOKEN_EXPIRY_MARGIN = timedelta(seconds=60)
MAX_BASIC_FORM_TYPES = 4


class Company(BaseModel):
    """Represents a company with SEC filing information."""

    ticker: str
    cik: str
    name: str

    @field_validator('ticker')
    @classmethod
    def validate_ticker(cls, v: str) -> str:
        """Validate ticker is not empty."""
        if not v or not v.strip():
            raise ValueError("Ticker cannot be empty")
        return v.strip().upper()

    @field_validator('cik')
    @classmethod
    def validate_cik(cls, v: str) -> str:
        """Validate CIK is not empty and pad it to 10 digits."""
        if not v or not v.strip():
            raise ValueError("CIK cannot be empty")
        v = v.strip()
        return v.zfill(10) if v.isdigit() else v


class Filing(BaseModel):
    """Represents one SEC filing from a company's submission history."""

    model_config = ConfigDict(frozen=True)

    form: str
    filing_date: date
    accession_number: str
    primary_document: str
    report_date: date | None = None
    items: tuple[str, ...] = ()

    @field_validator('form')
    @classmethod
    def validate_form(cls, v: str) -> str:
        """Validate form type is not empty."""
        if not v or not v.strip():
            raise ValueError("Form type cannot be empty")
        return v.strip()

    @field_validator('accession_number')
    @classmethod
    def validate_accession_number(cls, v: str) -> str:
        """Validate accession number is not empty."""
        if not v or not v.strip():
            raise ValueError("Accession number cannot be empty")
        return v.strip()

    @field_validator('report_date', mode='before')
    @classmethod
    def blank_report_date(cls, v):
        # The submissions feed uses "" for filings without a period
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def key(self) -> tuple[str, str]:
        return (self.accession_number, self.primary_document)

    @property
    def extension(self) -> str:
        return Path(self.primary_document).suffix.lower().lstrip('.')


class FilingHistory(BaseModel):
    """Decoded submissions document for one CIK."""

    cik: str
    company_name: str
    tickers: list[str] = Field(default_factory=list)
    filings: list[Filing] = Field(default_factory=list)


class FilingFilter(BaseModel):
    """Filter criteria for SEC filings search."""

    form_types: list[str] | None = None
    date_from: date | None = None
    date_to: date | None = None
    limit: int | None = None

    @field_validator('limit')
    @classmethod
    def validate_limit(cls, v: int | None) -> int | None:
        """Validate limit is positive."""
        if v is not None and v <= 0:
            raise ValueError("Limit must be greater than 0")
        return v

    @field_validator('date_from')
    @classmethod
    def validate_date_from(cls, v: date | None) -> date | None:
        """Validate start date is not in the future."""
        if v is not None and v > date.today():
            raise ValueError("Date cannot be in the future")
        return v


class FilingCategory(str, Enum):
    """Semantic buckets of an intelligence package, in priority order."""

    FINANCIALS = "financials"
    MATERIAL_EVENTS = "materialEvents"
    CAPITAL_STRUCTURE = "capitalStructure"
    OWNERSHIP = "ownership"
    GOVERNANCE = "governance"

    @property
    def directory(self) -> str:
        return _CATEGORY_DIRECTORIES[self]

    @property
    def label(self) -> str:
        return _CATEGORY_LABELS[self]


_CATEGORY_DIRECTORIES = {
    FilingCategory.FINANCIALS: "financials",
    FilingCategory.MATERIAL_EVENTS: "events",
    FilingCategory.CAPITAL_STRUCTURE: "capital",
    FilingCategory.OWNERSHIP: "ownership",
    FilingCategory.GOVERNANCE: "governance",
}

_CATEGORY_LABELS = {
    FilingCategory.FINANCIALS: "Financial Reports",
    FilingCategory.MATERIAL_EVENTS: "Material Events",
    FilingCategory.CAPITAL_STRUCTURE: "Capital Structure",
    FilingCategory.OWNERSHIP: "Ownership",
    FilingCategory.GOVERNANCE: "Governance",
}


class CategorizedFilings(BaseModel):
    """Output of the filing classifier, one field per slot."""

    model_config = ConfigDict(frozen=True)

    latest_ten_k: Filing | None = None
    recent_ten_qs: list[Filing] = Field(default_factory=list)
    recent_eight_ks: list[Filing] = Field(default_factory=list)
    registration_statements: list[Filing] = Field(default_factory=list)
    prospectus_supplements: list[Filing] = Field(default_factory=list)
    insider_transactions: list[Filing] = Field(default_factory=list)
    major_shareholder_filings: list[Filing] = Field(default_factory=list)
    latest_proxy_statement: Filing | None = None
    activist_amendments: list[Filing] = Field(default_factory=list)

    def by_category(self) -> dict[FilingCategory, list[Filing]]:
        """Group slots by category, in download order."""
        return {
            FilingCategory.FINANCIALS: _optional(self.latest_ten_k) + self.recent_ten_qs,
            FilingCategory.MATERIAL_EVENTS: list(self.recent_eight_ks),
            FilingCategory.CAPITAL_STRUCTURE: self.registration_statements + self.prospectus_supplements,
            FilingCategory.OWNERSHIP: self.insider_transactions + self.major_shareholder_filings,
            FilingCategory.GOVERNANCE: _optional(self.latest_proxy_statement) + self.activist_amendments,
        }

    @property
    def total_count(self) -> int:
        return sum(len(filings) for filings in self.by_category().values())


def _optional(filing: Filing | None) -> list[Filing]:
    return [filing] if filing is not None else []


class MarketSnapshot(BaseModel):
    """Quote, moving averages and derived daily-series statistics."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    symbol: str
    previous_close: float = 0.0
    current_price: float | None = None
    average_volume_20d: int = 0
    moving_average_20: float = 0.0
    moving_average_50: float = 0.0
    moving_average_200: float = 0.0
    high_52_week: float = 0.0
    low_52_week: float = 0.0
    as_of: datetime


class ShortInterestRecord(BaseModel):
    """Short interest figures for one symbol and settlement cycle."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    symbol: str
    short_interest_shares: int = 0
    short_interest_ratio: float = 0.0
    percent_of_float: float = 0.0
    days_to_cover: float = 0.0
    previous_short_interest_shares: int = 0
    change_percent: float = 0.0
    record_date: date
    settlement_date: date | None = Field(default=None, validate_default=True)

    @field_validator('settlement_date')
    @classmethod
    def default_settlement_date(cls, v: date | None, info: ValidationInfo) -> date | None:
        """Fall back to T+2 after the record date."""
        if v is None and info.data.get('record_date') is not None:
            return info.data['record_date'] + timedelta(days=2)
        return v


class AccessToken(BaseModel):
    """OAuth bearer token with its absolute expiry."""

    value: str
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at - TOKEN_EXPIRY_MARGIN


class ManifestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CompanyInfo(ManifestModel):
    ticker: str
    cik: str
    name: str
    sector: str | None = None
    industry: str | None = None


class KeyMetrics(ManifestModel):
    market_cap: float | None = None
    enterprise_value: float | None = None
    pe_ratio: float | None = None
    peg_ratio: float | None = None
    price_to_book: float | None = None
    debt_to_equity: float | None = None


class CompanyOverview(ManifestModel):
    """Sector, industry and valuation metrics from the market data provider."""

    symbol: str
    sector: str | None = None
    industry: str | None = None
    key_metrics: KeyMetrics = Field(default_factory=KeyMetrics)


class MovingAverages(ManifestModel):
    ma20: float
    ma50: float
    ma200: float


class Range52Week(ManifestModel):
    high: float
    low: float
    current_vs_high: float
    current_vs_low: float


class MarketDataExport(ManifestModel):
    symbol: str
    as_of: datetime
    previous_close: float
    current_price: float | None = None
    average_volume_20d: int
    moving_averages: MovingAverages
    range_52_week: Range52Week

    @classmethod
    def from_snapshot(cls, snapshot: MarketSnapshot) -> "MarketDataExport":
        reference = snapshot.current_price if snapshot.current_price is not None else snapshot.previous_close
        return cls(
            symbol=snapshot.symbol,
            as_of=snapshot.as_of,
            previous_close=snapshot.previous_close,
            current_price=snapshot.current_price,
            average_volume_20d=snapshot.average_volume_20d,
            moving_averages=MovingAverages(
                ma20=snapshot.moving_average_20,
                ma50=snapshot.moving_average_50,
                ma200=snapshot.moving_average_200,
            ),
            range_52_week=Range52Week(
                high=snapshot.high_52_week,
                low=snapshot.low_52_week,
                current_vs_high=_percent_from(reference, snapshot.high_52_week),
                current_vs_low=_percent_from(reference, snapshot.low_52_week),
            ),
        )


def _percent_from(value: float, reference: float) -> float:
    if not reference:
        return 0.0
    return (value - reference) / reference * 100


class DataSnapshot(ManifestModel):
    market_data: MarketDataExport | None = None
    short_interest: ShortInterestRecord | None = None
    key_metrics: KeyMetrics | None = None


EIGHT_K_ITEMS = {
    "1.01": "Entry into a Material Definitive Agreement",
    "1.02": "Termination of a Material Definitive Agreement",
    "2.01": "Completion of Acquisition or Disposition of Assets",
    "2.02": "Results of Operations and Financial Condition",
    "2.03": "Creation of a Direct Financial Obligation",
    "3.01": "Notice of Delisting or Failure to Satisfy a Listing Rule",
    "4.01": "Changes in Registrant's Certifying Accountant",
    "5.01": "Changes in Control of Registrant",
    "5.02": "Departure of Directors or Certain Officers",
    "5.03": "Amendments to Articles or Bylaws",
    "7.01": "Regulation FD Disclosure",
    "8.01": "Other Events",
}


class FilingReference(ManifestModel):
    type: str
    filing_date: date = Field(alias="date")
    filename: str
    accession_number: str
    description: str | None = None
    items: list[str] | None = None


class FilingCategories(ManifestModel):
    financials: list[FilingReference] = Field(default_factory=list)
    material_events: list[FilingReference] = Field(default_factory=list)
    capital_structure: list[FilingReference] = Field(default_factory=list)
    ownership: list[FilingReference] = Field(default_factory=list)
    governance: list[FilingReference] = Field(default_factory=list)


class FilingsManifest(ManifestModel):
    total_count: int
    categories: FilingCategories


class DataSource(ManifestModel):
    """Provenance of one data section of the package."""

    source: str
    last_updated: datetime
    is_delayed: bool = False
    delay_days: int | None = None
    filing_count: int | None = None


class DataSources(ManifestModel):
    sec_filings: DataSource
    market_data: DataSource | None = None
    short_interest: DataSource | None = None


class PackageManifest(ManifestModel):
    version: str = "1.0"
    generated_at: datetime
    company: CompanyInfo
    data_snapshot: DataSnapshot
    filings_included: FilingsManifest
    data_sources: DataSources


class DownloadOptions(BaseModel):
    """Options of the basic form-type / date-range download."""

    ticker: str
    form_types: list[str]
    start_date: date
    end_date: date
    output_dir: Path
    convert_to_pdf: bool = True
    keep_original: bool = False
    merge_by_type: bool = False

    @field_validator('ticker')
    @classmethod
    def validate_ticker(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Ticker cannot be empty")
        return v.strip()

    @field_validator('form_types')
    @classmethod
    def validate_form_types(cls, v: list[str]) -> list[str]:
        """Keep at most four distinct, non-empty form types."""
        seen: list[str] = []
        for form_type in v:
            form_type = form_type.strip()
            if form_type and form_type.upper() not in [s.upper() for s in seen]:
                seen.append(form_type)
        if not seen:
            raise ValueError("At least one form type is required")
        if len(seen) > MAX_BASIC_FORM_TYPES:
            raise ValueError(f"At most {MAX_BASIC_FORM_TYPES} form types can be selected")
        return seen

    @model_validator(mode='after')
    def validate_date_range(self) -> "DownloadOptions":
        if self.start_date > self.end_date:
            raise ValueError("Start date must not be after end date")
        return self


class PackageOptions(BaseModel):
    """Options of the intelligence package workflow."""

    ticker: str
    output_dir: Path
    include_market_data: bool = False
    alpha_vantage_api_key: str | None = None
    include_short_interest: bool = False
    finra_client_id: str | None = None
    finra_client_secret: str | None = None
    include_key_metrics: bool = False
    convert_to_pdf: bool = True
    keep_original: bool = False
    merge_by_type: bool = False
    as_of: date = Field(default_factory=date.today)

    @field_validator('ticker')
    @classmethod
    def validate_ticker(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Ticker cannot be empty")
        return v.strip().upper()

    @model_validator(mode='after')
    def validate_market_key(self) -> "PackageOptions":
        if (self.include_market_data or self.include_key_metrics) and not self.alpha_vantage_api_key:
            raise ValueError("An Alpha Vantage API key is required for market data")
        return self


class DownloadResult(BaseModel):
    successful: int
    total: int
    company_dir: Path | None = None


class PackageResult(BaseModel):
    package_dir: Path
    downloaded: int
    total: int
    manifest: PackageManifest
