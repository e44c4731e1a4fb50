from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import quote

from transit_mcp.domain.exceptions import InvalidDataError, UnknownOperatorError
from transit_mcp.domain.value_objects import ApiType, DataType, LineKind
from transit_mcp.infrastructure.settings import Settings

PUBLIC_API_BASE = "https://api-public.odpt.org/api/v4"
STANDARD_API_BASE = "https://api.odpt.org/api/v4"
CHALLENGE_API_BASE = "https://api-challenge.odpt.org/api/v4"

OPERATOR_PREFIX = "odpt.Operator:"


@dataclass(frozen=True)
class Operator:
    """A transit operator and where its data comes from.

    For GTFS operators ``code`` is the file path under the ODPT files
    endpoint; for the JSON API it is the ``odpt.Operator:*`` identifier.
    """

    key: str
    display_name: str
    code: str
    kind: LineKind
    api_type: ApiType
    has_train_timetable: bool = False
    gtfs_stem: str | None = None
    gtfs_date: str | None = None  # publish date embedded in the GTFS cache key

    @property
    def is_gtfs(self) -> bool:
        return self.api_type == ApiType.GTFS

    @property
    def uses_conditional_gtfs(self) -> bool:
        """Undated GTFS files are revalidated with ETag/Last-Modified."""
        return self.is_gtfs and not self.gtfs_date

    @property
    def file_name(self) -> str:
        """Cache file name for the operator's line JSON, e.g. "tokyometro_railway.json"."""
        name = self.code.replace(OPERATOR_PREFIX, "").lower().replace(" ", "")
        return f"{name}_{self.kind.value.lower()}.json"

    @property
    def gtfs_cache_key(self) -> str:
        stem = self.gtfs_stem or self.file_name.replace(".json", "").replace("/", "_").replace("?", "_")
        if self.gtfs_date:
            return f"gtfs_{stem}_{self.gtfs_date}.zip"
        return f"gtfs_{stem}.zip"

    @property
    def gtfs_extracted_name(self) -> str:
        return self.gtfs_cache_key.replace(".zip", "_extracted")

    def auth_key(self, settings: Settings) -> str:
        """Consumer key matching this operator's API family."""
        if self.api_type == ApiType.CHALLENGE:
            return settings.challenge_key
        if self.api_type == ApiType.PUBLIC:
            return ""
        return settings.access_token


def _rail(key: str, name: str, code: str, api: ApiType, timetable: bool = False) -> Operator:
    return Operator(key, name, OPERATOR_PREFIX + code, LineKind.RAILWAY, api, has_train_timetable=timetable)


def _bus(key: str, name: str, code: str, api: ApiType) -> Operator:
    return Operator(key, name, OPERATOR_PREFIX + code, LineKind.BUS, api)


def _gtfs(key: str, name: str, path: str, stem: str, date: str | None) -> Operator:
    return Operator(key, name, path, LineKind.BUS, ApiType.GTFS, gtfs_stem=stem, gtfs_date=date)


OPERATORS: tuple[Operator, ...] = (
    _rail("JR_EAST", "JR East", "JR-East", ApiType.CHALLENGE, timetable=True),
    _rail("TOKYO_METRO", "Tokyo Metro", "TokyoMetro", ApiType.STANDARD, timetable=True),
    _rail("TOEI_METRO", "Toei Subway", "Toei", ApiType.PUBLIC, timetable=True),
    _rail("YOKOHAMA_METRO", "Yokohama Municipal Subway", "YokohamaMunicipal", ApiType.STANDARD, timetable=True),
    _rail("TOBU", "Tobu Railway", "Tobu", ApiType.CHALLENGE, timetable=True),
    _rail("YURIKAMOME", "Yurikamome", "Yurikamome", ApiType.STANDARD),
    _rail("SOTETSU", "Sotetsu Railway", "Sotetsu", ApiType.CHALLENGE, timetable=True),
    _rail("TSUKUBA", "Tsukuba Express", "MIR", ApiType.STANDARD, timetable=True),
    _rail("TAMA", "Tama Monorail", "TamaMonorail", ApiType.STANDARD, timetable=True),
    _rail("RINKAI", "Rinkai Line", "TWR", ApiType.STANDARD, timetable=True),
    _rail("KEIKYU", "Keikyu", "Keikyu", ApiType.CHALLENGE),
    _rail("ODAKYU", "Odakyu", "Odakyu", ApiType.CHALLENGE),
    _rail("SEIBU", "Seibu Railway", "Seibu", ApiType.CHALLENGE),
    _rail("TOKYU", "Tokyu", "Tokyu", ApiType.CHALLENGE),
    _bus("TOKYU_BUS", "Tokyu Bus", "TokyuBus", ApiType.STANDARD),
    _bus("SEIBU_BUS", "Seibu Bus", "SeibuBus", ApiType.STANDARD),
    _bus("SOTETSU_BUS", "Sotetsu Bus", "SotetsuBus", ApiType.STANDARD),
    _bus("KANACHU_BUS", "Kanachu Bus", "Kanachu", ApiType.CHALLENGE),
    _bus("KOKUSAI_KOGYO", "Kokusai Kogyo Bus", "KokusaiKogyoBus", ApiType.CHALLENGE),
    _gtfs("TOEI_BUS", "Toei Bus", "Toei/data/ToeiBus-GTFS.zip", "toeibus", None),
    _gtfs("YOKOHAMA_BUS", "Yokohama Municipal Bus", "YokohamaMunicipal/Bus.zip?", "yokohamabus", "20251101"),
    _gtfs("KEIO_BUS", "Keio Bus", "KeioBus/AllLines.zip?", "keiobus", "20251117"),
    _gtfs("KANTO_BUS", "Kanto Bus", "KantoBus/AllLines.zip?", "kantobus", "20251110"),
    _gtfs("NISHITOKYO_BUS", "Nishitokyo Bus", "TokyuBus/tokyubus_community.zip?", "nishitokyobus", "20251101"),
    _gtfs(
        "KAWASAKI_BUS", "Kawasaki City Bus",
        "TransportationBureau_CityOfKawasaki/AllLines.zip?", "kawasakibus", "20251201",
    ),
    _gtfs(
        "KAWASAKI_TSURUMI_RINKO_BUS", "Kawasaki Tsurumi Rinko Bus",
        "KawasakiTsurumiRinkoBus/allrinko.zip?", "kawasakitsurumirinkobus", "20251117",
    ),
    _gtfs("KEISEI_TRANSIT_BUS", "Keisei Transit Bus", "KeiseiTransitBus/AllLines.zip?", "keiseitransitbus", "20250401"),
    _gtfs("IZUHAKONE_BUS", "Izuhakone Bus", "IzuhakoneBus/IZHB.zip?", "izuhakonebus", "20251101"),
)


def operators_for(kind: LineKind) -> list[Operator]:
    return [op for op in OPERATORS if op.kind == kind]


def find_operator(value: str) -> Operator:
    """Resolve an operator by key ("TOKYO_METRO"), code or display name.

    Raises UnknownOperatorError when nothing matches.
    """
    needle = value.strip()
    for op in OPERATORS:
        if needle in (op.key, op.code, op.display_name) or needle.upper() == op.key:
            return op
    raise UnknownOperatorError(f"Unknown operator: {value}")


def api_link(operator: Operator, data_type: DataType, settings: Settings) -> str:
    """Build the request URL for an operator's data set.

    JSON API links carry the consumer key as ``acl:consumerKey`` and end with
    an ``odpt:operator`` filter, so callers append ``&key=value`` filters.
    GTFS links point at the operator's ZIP file.
    """
    if operator.api_type == ApiType.GTFS:
        return gtfs_link(operator, settings)
    endpoint = data_type.endpoint(operator.kind)
    if operator.api_type == ApiType.PUBLIC:
        return f"{PUBLIC_API_BASE}/{endpoint}?odpt:operator={operator.code}"
    base = CHALLENGE_API_BASE if operator.api_type == ApiType.CHALLENGE else STANDARD_API_BASE
    key = operator.auth_key(settings)
    return f"{base}/{endpoint}?odpt:operator={operator.code}&acl:consumerKey={key}"


def gtfs_link(operator: Operator, settings: Settings) -> str:
    if not operator.is_gtfs:
        raise InvalidDataError(f"{operator.key} has no GTFS feed")
    if operator.uses_conditional_gtfs:
        return f"{PUBLIC_API_BASE}/files/{operator.code}"
    path = operator.code.rstrip("?")
    return f"{STANDARD_API_BASE}/files/odpt/{path}?date={operator.gtfs_date}&acl:consumerKey={settings.access_token}"


def query_value(value: str) -> str:
    """Escape a filter value appended to an API link (titles may contain spaces or "&")."""
    return quote(value, safe=":.-_")
