"""
Centralized Constants - SINGLE SOURCE OF TRUTH

Status vocabularies, transition graphs and pipeline thresholds shared by
models, services and routes. Models reference these lists in their
CHECK constraints, so adding a value here requires a migration.

DO NOT duplicate these definitions in other files.
"""

# =============================================================================
# SESSION STATE MACHINE
# =============================================================================

SESSION_STATUSES = ['draft', 'active', 'sold_out', 'cancelled', 'completed']

# Directed graph of allowed status edges. cancelled/completed are terminal.
SESSION_TRANSITIONS = {
    'draft': {'active', 'cancelled'},
    'active': {'sold_out', 'cancelled', 'completed'},
    'sold_out': {'active', 'cancelled', 'completed'},
    'cancelled': set(),
    'completed': set(),
}

# Only these statuses follow enrolled_count vs capacity automatically
CAPACITY_MANAGED_STATUSES = {'active', 'sold_out'}

# Sessions in these statuses accept registrations
REGISTRABLE_STATUSES = {'active', 'sold_out'}

SESSION_DATA_SOURCES = ['scraped', 'manual', 'enhanced']

# Defaults applied when a scraped record omits a value
DEFAULT_DROP_OFF = (9, 0)
DEFAULT_PICK_UP = (15, 0)
DEFAULT_CAPACITY = 20
DEFAULT_CURRENCY = 'USD'


# =============================================================================
# SCRAPE JOBS
# =============================================================================

JOB_STATUSES = ['pending', 'running', 'completed', 'failed']

JOB_TRANSITIONS = {
    'pending': {'running', 'failed'},
    'running': {'completed', 'failed'},
    'completed': set(),
    'failed': set(),
}


# =============================================================================
# SOURCE HEALTH
# =============================================================================

DEGRADED_FAILURE_THRESHOLD = 3
REGENERATION_FAILURE_THRESHOLD = 5
DISABLE_FAILURE_THRESHOLD = 10
ZERO_RESULTS_REGENERATION_THRESHOLD = 3
CONSECUTIVE_404_DISABLE_THRESHOLD = 5

MAX_BACKOFF_HOURS = 168
RATE_LIMIT_BACKOFF_HOURS = 6

# Automation health buckets (consecutive failures)
HEALTH_DEGRADED_MIN = 1
HEALTH_FAILING_MIN = 5

QUALITY_TIERS = ['high', 'medium', 'low']
QUALITY_TIER_HIGH_MIN = 80
QUALITY_TIER_MEDIUM_MIN = 50


# =============================================================================
# ALERTS
# =============================================================================

ALERT_TYPES = [
    'scraper_disabled',
    'scraper_degraded',
    'high_change_volume',
    'scraper_needs_regeneration',
    'new_sources_pending',
    'rate_limited',
    'zero_results',
    'zero_price',
]

ALERT_SEVERITIES = ['info', 'warning', 'error', 'critical']

ALERT_DEDUPE_WINDOW_HOURS = 24

ZERO_PRICE_RATIO_THRESHOLD = 0.5

HIGH_CHANGE_VOLUME_RATIO = 0.5
HIGH_CHANGE_VOLUME_MIN_CHANGES = 10


# =============================================================================
# CHANGE DETECTION
# =============================================================================

CHANGE_TYPES = [
    'session_added',
    'session_removed',
    'status_changed',
    'price_changed',
    'dates_changed',
]

# Fuzzy camp-name match for sessions sharing a source and start date
NAME_SIMILARITY_THRESHOLD = 0.8


# =============================================================================
# PENDING SESSIONS
# =============================================================================

PENDING_SESSION_STATUSES = ['pending_review', 'manually_fixed', 'imported', 'discarded']


# =============================================================================
# SCRAPER DEVELOPMENT REQUESTS
# =============================================================================

DEV_REQUEST_STATUSES = ['pending', 'in_progress', 'testing', 'needs_feedback', 'completed', 'failed']

DEV_REQUEST_TRANSITIONS = {
    'pending': {'in_progress', 'failed'},
    'in_progress': {'testing', 'failed'},
    'testing': {'needs_feedback', 'completed', 'failed', 'pending'},
    'needs_feedback': {'in_progress', 'completed', 'failed'},
    'completed': set(),
    'failed': set(),
}

# A source with a request in one of these statuses is not re-queued
OPEN_DEV_REQUEST_STATUSES = {'pending', 'in_progress', 'testing', 'needs_feedback'}

DEV_REQUEST_TYPES = ['new', 'regeneration']

DEFAULT_MAX_TEST_RETRIES = 3


# =============================================================================
# REGISTRATIONS
# =============================================================================

REGISTRATION_STATUSES = ['interested', 'waitlisted', 'registered', 'cancelled']


# =============================================================================
# NOTIFICATIONS
# =============================================================================

NOTIFICATION_TYPES = ['registration_opened', 'low_availability']

# Previous statuses that make an "active" transition a registration opening
REGISTRATION_OPENED_FROM = {'sold_out', 'draft'}

DEFAULT_BRAND = {
    'brand_name': 'PDX Camps',
    'domain': 'pdxcamps.com',
    'from_email': 'hello@pdxcamps.com',
}


# =============================================================================
# DISCOVERY
# =============================================================================

DISCOVERED_SOURCE_STATUSES = [
    'pending_analysis',
    'pending_review',
    'approved',
    'rejected',
    'duplicate',
    'scraper_generated',
]

KNOWN_DIRECTORIES = [
    'activityhero.com',
    'sawyer.com',
    'campsearch.com',
    'mysummercamps.com',
    'acacamps.org',
    'campnavigator.com',
    'kidscamps.com',
    'summercampdirectories.com',
]

CAMP_SIGNAL_KEYWORDS = [
    'summer camp',
    'day camp',
    'kids camp',
    'registration',
    'enroll',
    'sign up',
    'ages',
    'grades',
    'children',
    'youth',
    'program',
]


# =============================================================================
# SCHEDULED TASKS
# =============================================================================

TASK_STATUSES = ['pending', 'running', 'completed', 'failed']

TASK_MAX_ATTEMPTS = 3


# =============================================================================
# SCRAPED RECORD CONTRACT
# =============================================================================

# Keys an extraction routine or declarative config may emit per record
SESSION_FIELDS = frozenset({
    "name", "description", "category", "organization_name",
    "start_date", "end_date", "date_raw",
    "drop_off_hour", "drop_off_minute", "pick_up_hour", "pick_up_minute", "time_raw",
    "price_cents", "price_raw",
    "min_age", "max_age", "min_grade", "max_grade", "age_grade_raw",
    "location", "registration_url",
    "capacity", "enrolled_count", "spots_left", "is_available",
    "source_session_id", "image_urls",
})
