# --- Standard Libraries ---
import requests
from bs4 import BeautifulSoup
from dataclasses import dataclass, field, fields, replace
from enum import Enum
import argparse
import csv
import datetime
import logging
import os
import re
import sys

# --- Dependencies need installation ---
# CORE: pip install requests beautifulsoup4
# HTTP trigger (scraper_api.py): pip install flask


# --- Configuration ---
USER_AGENT = 'RadioRegistryScraper/1.0 (+https://www.ofcom.org.uk/)'
OFCOM_STATIONS_URL = "https://static.ofcom.org.uk/static/radiolicensing/html/radio-stations/"
OUTPUT_TIMESTAMP_FORMAT = "%y%m%d-%H%M"
LOG_FILE_NAME = "scraper.log"
ALL_SELECTION = "All"
QUIT_SELECTION = "Quit"

# Sentinels returned by fetch_url instead of a response
PAGE_NOT_FOUND = "PAGE_NOT_FOUND"
FETCH_ERROR = "FETCH_ERROR"

# Station titles are the page's <h1>
TITLE_PATTERN = r'<h1[^>]*>(?P<name>.*?)</h1>'

# Each detail field is an optional lookahead anchored at the start of the page,
# so fields may appear in any order and a missing label leaves its group unset.
SINGLE_FIELD = r'(?=(?:.*?<strong>{label}:?</strong>\s*(?:<a[^>]*>)?(?P<{group}>[^<]*?)\s*(?:</a>)?\s*</p>)?)'
# Multi-paragraph fields run over paragraphs joined by a literal </p><p> and stop at the
# first closing </p> not followed by an unlabelled <p>. The markers are kept for the field mapper.
PARAGRAPH_FIELD = r'(?=(?:.*?<strong>{label}:?</strong>\s*(?:</p>\s*<p>)?(?P<{group}>(?:(?!</p>).)*(?:</p><p>(?!<strong>)(?:(?!</p>).)*)*)</p>)?)'

PARAGRAPH_BREAK = "</p><p>"
PARAGRAPH_END = "</p>"


def build_detail_pattern(*field_specs):
    """Builds a detail pattern from (label, group, multi_paragraph) triples."""
    parts = [r'\A']
    for label, group, multi_paragraph in field_specs:
        template = PARAGRAPH_FIELD if multi_paragraph else SINGLE_FIELD
        parts.append(template.format(label=label, group=group))
    return "".join(parts)


COMMON_DETAIL_FIELDS = (
    ("Licence number", "licence_number", False),
    ("Contact details", "contact_details", True),
    ("Telephone", "telephone", False),
    ("Website", "website", False),
    ("Email", "email", False),
)


# --- Errors ---

class ScraperError(Exception):
    """Base class for scraper failures."""


class ListingFetchError(ScraperError):
    """A category's listing page could not be fetched."""


class UnknownCategoryError(ScraperError):
    """A category id outside the known registries. Fatal to the run."""


# --- Categories ---

class Category(Enum):
    COMMUNITY = "Community"
    DIGITAL = "Digital"
    SMALL_SCALE = "SmallScale"


def resolve_category(category_id):
    """Returns the Category for an enum member or its name, raising UnknownCategoryError otherwise."""
    if isinstance(category_id, Category):
        return category_id
    try:
        return Category(category_id)
    except ValueError:
        raise UnknownCategoryError(f"Unknown station category: {category_id!r}") from None


@dataclass(frozen=True)
class CategoryConfig:
    """Where a registry lives and how its pages are matched."""

    category_id: Category
    listing_url: str
    detail_base_url: str
    link_prefix_pattern: str
    title_pattern: str
    detail_pattern: str

    @property
    def name(self):
        return self.category_id.value


COMMUNITY_CONFIG = CategoryConfig(
    category_id=Category.COMMUNITY,
    listing_url=OFCOM_STATIONS_URL + "community/community-main.htm",
    detail_base_url=OFCOM_STATIONS_URL + "community/",
    link_prefix_pattern=r'^cr\d',
    title_pattern=TITLE_PATTERN,
    detail_pattern=build_detail_pattern(
        *COMMON_DETAIL_FIELDS,
        ("Frequency", "frequency", True),
        ("Airing from", "airing_from", False),
        ("Airing to", "airing_to", False),
        ("Licencee", "licencee", False),
        ("Group", "station_group", False),
    ),
)

DIGITAL_CONFIG = CategoryConfig(
    category_id=Category.DIGITAL,
    listing_url=OFCOM_STATIONS_URL + "digital/cdp-main.htm",
    detail_base_url=OFCOM_STATIONS_URL + "digital/",
    link_prefix_pattern=r'^cdp',
    title_pattern=TITLE_PATTERN,
    detail_pattern=build_detail_pattern(
        *COMMON_DETAIL_FIELDS,
        ("SSDAB multiplex", "ssdab_multiplex", False),
    ),
)

SMALL_SCALE_CONFIG = CategoryConfig(
    category_id=Category.SMALL_SCALE,
    listing_url=OFCOM_STATIONS_URL + "small-scale/ssdab-main.htm",
    detail_base_url=OFCOM_STATIONS_URL + "small-scale/",
    link_prefix_pattern=r'^ss\d',
    title_pattern=TITLE_PATTERN,
    detail_pattern=build_detail_pattern(
        *COMMON_DETAIL_FIELDS,
        ("Frequency", "frequency", True),
        ("Licensee", "licensee", False),
    ),
)

CATEGORY_CONFIGS = {
    config.category_id.value: config
    for config in (COMMUNITY_CONFIG, DIGITAL_CONFIG, SMALL_SCALE_CONFIG)
}


def get_category_config(category_name):
    """Looks up the registry configuration for a category name."""
    return CATEGORY_CONFIGS[resolve_category(category_name).value]


# --- Records ---

def _column(name):
    return field(default="", metadata={"column": name})


@dataclass(frozen=True)
class CommunityFields:
    frequency: str = _column("Frequency")
    airing_from: str = _column("Airing From")
    airing_to: str = _column("Airing To")
    licencee: str = _column("Licencee")
    group: str = _column("Group")


@dataclass(frozen=True)
class DigitalFields:
    ssdab_multiplex: str = _column("SSDAB multiplex")


@dataclass(frozen=True)
class SmallScaleFields:
    frequency: str = _column("Frequency")
    licensee: str = _column("Licensee")


@dataclass(frozen=True)
class StationRecord:
    """One station row: the common fields plus a category-specific extension."""

    name: str = _column("Name")
    licence_number: str = _column("Licence Number")
    contact_details: str = _column("Contact Details")
    telephone: str = _column("Telephone")
    website: str = _column("Website")
    email: str = _column("Email")
    extension: object = field(default=None, metadata={"column": None})

    def to_row(self):
        """Returns the record as a column-name to value dict, common columns first."""
        row = {f.metadata["column"]: getattr(self, f.name) for f in fields(self) if f.metadata["column"]}
        if self.extension is not None:
            row.update({f.metadata["column"]: getattr(self.extension, f.name) for f in fields(self.extension)})
        return row


@dataclass(frozen=True)
class ErrorNote:
    """A station that produced no record."""

    url: str
    reason: str = "not_found"
    detail: str = ""

    def __str__(self):
        if self.reason == "fetch_failed":
            return f"Fetch failed at {self.url} ({self.detail})"
        return f"No URL at {self.url}"


COMMON_COLUMNS = [f.metadata["column"] for f in fields(StationRecord) if f.metadata["column"]]


def csv_header(category_id):
    """Column names for a category's CSV, common columns first."""
    extension_cls = _extension_class(resolve_category(category_id))
    return COMMON_COLUMNS + [f.metadata["column"] for f in fields(extension_cls)]


# --- Helper Functions ---

def setup_logging(log_file_path=None):
    """Configures logging to console and, optionally, a file."""
    log_formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if log_file_path:
        try:
            file_handler = logging.FileHandler(log_file_path, mode='a', encoding='utf-8')
            file_handler.setFormatter(log_formatter)
            root_logger.addHandler(file_handler)
        except OSError as e:
            print(f"Error setting up file logger at {log_file_path}: {e}", file=sys.stderr)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(log_formatter)
    root_logger.addHandler(console_handler)

    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def fetch_url(url):
    """Fetches a URL once. Returns the response, or a sentinel string on failure."""
    logging.info(f"Fetching: {url}")
    try:
        response = requests.get(url, headers={"User-Agent": USER_AGENT})
    except requests.exceptions.RequestException as e:
        logging.error(f"Request error fetching {url}: {e}")
        return FETCH_ERROR

    if response.status_code == 404:
        logging.error(f"Page not found: {url} (HTTP 404)")
        return PAGE_NOT_FOUND
    if response.status_code != 200:
        logging.error(f"Unexpected status fetching {url}: HTTP {response.status_code}")
        return f"HTTP_{response.status_code}"
    return response


def page_text(response):
    """Decodes a fetched page as UTF-8, ignoring the charset requests guesses from headers."""
    return response.content.decode('utf-8', errors='ignore')


def fetch_links(url):
    """Returns the distinct href values on a listing page, in document order."""
    response = fetch_url(url)
    if isinstance(response, str):
        raise ListingFetchError(f"Could not fetch listing page {url} ({response})")

    soup = BeautifulSoup(page_text(response), 'html.parser')
    links = dict.fromkeys(a['href'] for a in soup.find_all('a', href=True))
    logging.info(f"Found {len(links)} distinct links on {url}")
    return list(links)


def filter_links(raw_links, prefix_pattern):
    """Keeps the links matching prefix_pattern, preserving their order."""
    prefix = re.compile(prefix_pattern)
    return [link for link in raw_links if prefix.search(link)]


def join_paragraphs(value, delimiter):
    """Collapses </p><p> breaks into delimiter and drops a trailing </p>."""
    value = value.replace(PARAGRAPH_BREAK, delimiter)
    if value.endswith(PARAGRAPH_END):
        value = value[:-len(PARAGRAPH_END)]
    return value


def _capture(match_set, group):
    return match_set.get(group) or ""


# --- Category Field Mapping ---

def _community_fields(match_set):
    return CommunityFields(
        frequency=join_paragraphs(_capture(match_set, "frequency"), " "),
        airing_from=_capture(match_set, "airing_from"),
        airing_to=_capture(match_set, "airing_to"),
        licencee=_capture(match_set, "licencee"),
        group=_capture(match_set, "station_group"),
    )


def _digital_fields(match_set):
    return DigitalFields(ssdab_multiplex=_capture(match_set, "ssdab_multiplex"))


def _small_scale_fields(match_set):
    return SmallScaleFields(
        frequency=join_paragraphs(_capture(match_set, "frequency"), ", "),
        licensee=_capture(match_set, "licensee"),
    )


CATEGORY_FIELD_RULES = {
    Category.COMMUNITY: (CommunityFields, _community_fields),
    Category.DIGITAL: (DigitalFields, _digital_fields),
    Category.SMALL_SCALE: (SmallScaleFields, _small_scale_fields),
}


def _extension_class(category):
    return CATEGORY_FIELD_RULES[category][0]


def apply_category_fields(category_id, common_record, match_set):
    """Attaches the category-specific fields to a record built from the common fields."""
    category = resolve_category(category_id)
    _, build_extension = CATEGORY_FIELD_RULES[category]
    return replace(common_record, extension=build_extension(match_set))


# --- Station Extraction ---

def extract_station(config, link):
    """
    Fetches one station's detail page and extracts its record.
    Returns a StationRecord, or an ErrorNote when the page fails to fetch or has no title.
    """
    resolve_category(config.category_id)
    url = config.detail_base_url + link

    response = fetch_url(url)
    if isinstance(response, str):
        return ErrorNote(url, reason="fetch_failed", detail=response)
    body = page_text(response)

    title_match = re.search(config.title_pattern, body, re.DOTALL)
    if not title_match or not title_match.group("name"):
        logging.warning(f"No station title found at {url}")
        return ErrorNote(url)

    detail_match = re.search(config.detail_pattern, body, re.DOTALL)
    match_set = detail_match.groupdict() if detail_match else {}

    record = StationRecord(
        name=title_match.group("name"),
        licence_number=_capture(match_set, "licence_number"),
        contact_details=join_paragraphs(_capture(match_set, "contact_details"), " "),
        telephone=_capture(match_set, "telephone"),
        website=_capture(match_set, "website"),
        email=_capture(match_set, "email"),
    )
    return apply_category_fields(config.category_id, record, match_set)


# --- Output ---

def write_outputs(category_name, records, error_notes, output_directory):
    """
    Writes <category>-<timestamp>.csv and Error-<category>-<timestamp>.txt.
    Returns (csv_path, error_path), or None when the files could not be written.
    On failure any file already written for this call is removed.
    """
    header = csv_header(category_name)
    timestamp = datetime.datetime.now().strftime(OUTPUT_TIMESTAMP_FORMAT)
    csv_path = os.path.join(output_directory, f"{category_name}-{timestamp}.csv")
    error_path = os.path.join(output_directory, f"Error-{category_name}-{timestamp}.txt")
    opened = []

    try:
        with open(csv_path, 'w', newline='', encoding='utf-8') as f:
            opened.append(csv_path)
            writer = csv.DictWriter(f, fieldnames=header)
            writer.writeheader()
            for record in records:
                writer.writerow(record.to_row())
        logging.info(f"Saved {len(records)} {category_name} stations to {csv_path}")

        with open(error_path, 'w', encoding='utf-8') as f:
            opened.append(error_path)
            for note in error_notes:
                f.write(f"{note}\n")
        logging.info(f"Saved {len(error_notes)} {category_name} errors to {error_path}")
    except OSError as e:
        logging.error(f"Error writing {category_name} output to {output_directory}: {e}")
        for path in opened:
            try:
                os.remove(path)
                logging.info(f"Removed partial output {path}")
            except OSError as remove_error:
                logging.error(f"Could not remove partial output {path}: {remove_error}")
        return None
    return csv_path, error_path


# --- Run Orchestration ---

def resolve_output_dir(path):
    """Returns path if it is an existing directory, otherwise the current working directory."""
    if path and path.strip() and os.path.isdir(path.strip()):
        return path.strip()
    if path and path.strip():
        logging.warning(f"Output directory {path!r} does not exist. Using {os.getcwd()}")
    return os.getcwd()


def run_category(config, output_dir):
    """Scrapes one registry start to finish and writes its output files."""
    name = resolve_category(config.category_id).value
    logging.info(f"--- Starting {name} stations from {config.listing_url} ---")
    summary = {"category": name, "status": "processing", "stations": 0, "records": 0, "errors": 0}

    links = filter_links(fetch_links(config.listing_url), config.link_prefix_pattern)
    summary["stations"] = len(links)
    logging.info(f"Found {len(links)} {name} station links")

    records = []
    error_notes = []
    for index, link in enumerate(links, start=1):
        result = extract_station(config, link)
        if isinstance(result, ErrorNote):
            error_notes.append(result)
        else:
            records.append(result)
        logging.info(f"{name}: {index * 100 / len(links):.0f}% complete ({index}/{len(links)})")

    summary["records"] = len(records)
    summary["errors"] = len(error_notes)
    written = write_outputs(name, records, error_notes, output_dir)
    if written is None:
        summary["status"] = "output_write_error"
    else:
        summary["csv_file"], summary["error_file"] = written
        summary["status"] = "processed"
    logging.info(f"--- Finished {name}: {len(records)} records, {len(error_notes)} errors ---")
    return summary


def run_selection(selection, output_dir):
    """Runs one category, or every category in registry order for 'All'."""
    if selection == ALL_SELECTION:
        configs = list(CATEGORY_CONFIGS.values())
    else:
        configs = [get_category_config(selection)]

    results = []
    for config in configs:
        try:
            results.append(run_category(config, output_dir))
        except ListingFetchError as e:
            logging.error(f"Skipping {config.name}: {e}")
            results.append({"category": config.name, "status": "listing_fetch_error", "error_message": str(e)})
    return results


MENU_OPTIONS = {
    "1": Category.COMMUNITY.value,
    "2": Category.DIGITAL.value,
    "3": Category.SMALL_SCALE.value,
    "4": ALL_SELECTION,
    "5": QUIT_SELECTION,
}


def interactive_menu(default_output_dir=None, input_func=input):
    """Prompts for a selection and an output directory until the user quits."""
    choices = {value.lower(): value for value in MENU_OPTIONS.values()}
    menu_text = "\n".join(f"  {key}. {value}" for key, value in MENU_OPTIONS.items())
    while True:
        answer = input_func(f"\nWhich stations would you like to scrape?\n{menu_text}\n> ").strip()
        selection = MENU_OPTIONS.get(answer) or choices.get(answer.lower())
        if selection is None:
            print(f"Unrecognised option: {answer!r}")
            continue
        if selection == QUIT_SELECTION:
            return

        path = input_func(f"Output directory [{default_output_dir or os.getcwd()}]: ")
        output_dir = resolve_output_dir(path or default_output_dir)
        run_selection(selection, output_dir)


# --- Main Execution ---

def main(argv=None):
    parser = argparse.ArgumentParser(description="Scrape Ofcom community radio registries into CSV files.")
    parser.add_argument("--category", choices=list(CATEGORY_CONFIGS) + [ALL_SELECTION],
                        help="Registry to scrape. Without it an interactive menu is shown.")
    parser.add_argument("--output-dir", default="", help="Directory for CSV and error files (default: current directory).")
    parser.add_argument("--no-log-file", action="store_true", help=f"Do not write {LOG_FILE_NAME} to the output directory.")
    args = parser.parse_args(argv)

    output_dir = resolve_output_dir(args.output_dir)
    setup_logging(None if args.no_log_file else os.path.join(output_dir, LOG_FILE_NAME))
    logging.info(f"Output will be saved to: {output_dir}")

    try:
        if args.category:
            results = run_selection(args.category, output_dir)
            for result in results:
                print(f"{result['category']}: {result['status']} "
                      f"({result.get('records', 0)} records, {result.get('errors', 0)} errors)")
        else:
            interactive_menu(default_output_dir=output_dir)
    except UnknownCategoryError as e:
        logging.critical(f"{e}. Aborting run.")
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
