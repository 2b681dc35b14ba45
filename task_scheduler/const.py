# File: const.py
"""Constants for the task scheduler.

This file centralizes frequency names, duration policies, completion policies,
storage keys, configuration keys and their defaults so every engine and the
scheduler manager agree on the same literals.
"""

import logging

# ------------------------------------------------------------------------------------------------
# Logging
# ------------------------------------------------------------------------------------------------
LOGGER = logging.getLogger(__package__)

# ------------------------------------------------------------------------------------------------
# Recurrence Frequencies
# ------------------------------------------------------------------------------------------------
FREQUENCY_HOURLY = "hourly"
FREQUENCY_DAILY = "daily"
FREQUENCY_WEEKLY = "weekly"
FREQUENCY_MONTHLY = "monthly"
FREQUENCY_YEARLY = "yearly"

FREQUENCY_OPTIONS = [
    FREQUENCY_HOURLY,
    FREQUENCY_DAILY,
    FREQUENCY_WEEKLY,
    FREQUENCY_MONTHLY,
    FREQUENCY_YEARLY,
]

# Recurrence end conditions
RECURRENCE_END_NEVER = "never"
RECURRENCE_END_AFTER_OCCURRENCES = "after_occurrences"
RECURRENCE_END_AFTER_DATE = "after_date"

RECURRENCE_END_OPTIONS = [
    RECURRENCE_END_NEVER,
    RECURRENCE_END_AFTER_OCCURRENCES,
    RECURRENCE_END_AFTER_DATE,
]

# Weekday indexes (Monday = 0, matches datetime.weekday())
WEEKDAY_MONDAY = 0
WEEKDAY_TUESDAY = 1
WEEKDAY_WEDNESDAY = 2
WEEKDAY_THURSDAY = 3
WEEKDAY_FRIDAY = 4
WEEKDAY_SATURDAY = 5
WEEKDAY_SUNDAY = 6

# ------------------------------------------------------------------------------------------------
# Occurrence Duration Policies
# ------------------------------------------------------------------------------------------------
DURATION_ALL_DAY = "all_day"
DURATION_TILL_END_OF_DAY = "till_end_of_day"
DURATION_FIXED = "fixed"

DURATION_OPTIONS = [DURATION_ALL_DAY, DURATION_TILL_END_OF_DAY, DURATION_FIXED]

# ------------------------------------------------------------------------------------------------
# Completion Policies
# ------------------------------------------------------------------------------------------------
COMPLETION_POLICY_SAME_DAY = "same_day"
COMPLETION_POLICY_AFTER_START = "after_start"
COMPLETION_POLICY_SAME_DAY_AFTER_START = "same_day_after_start"
COMPLETION_POLICY_DURING_EVENT = "during_event"

COMPLETION_POLICY_OPTIONS = [
    COMPLETION_POLICY_SAME_DAY,
    COMPLETION_POLICY_AFTER_START,
    COMPLETION_POLICY_SAME_DAY_AFTER_START,
    COMPLETION_POLICY_DURING_EVENT,
]

DEFAULT_COMPLETION_POLICY = COMPLETION_POLICY_SAME_DAY

# ------------------------------------------------------------------------------------------------
# Task Categories
# ------------------------------------------------------------------------------------------------
CATEGORY_QUESTIONNAIRE = "questionnaire"
CATEGORY_MEASUREMENT = "measurement"
CATEGORY_MEDICATION = "medication"

# ------------------------------------------------------------------------------------------------
# Notification Threads
# ------------------------------------------------------------------------------------------------
NOTIFICATION_THREAD_GLOBAL = "global"
NOTIFICATION_THREAD_TASK = "task"
NOTIFICATION_THREAD_CUSTOM = "custom"
NOTIFICATION_THREAD_NONE = "none"

NOTIFICATION_THREAD_OPTIONS = [
    NOTIFICATION_THREAD_GLOBAL,
    NOTIFICATION_THREAD_TASK,
    NOTIFICATION_THREAD_CUSTOM,
    NOTIFICATION_THREAD_NONE,
]

NOTIFICATION_ID_PREFIX = "task_scheduler.notification"
NOTIFICATION_THREAD_GLOBAL_ID = f"{NOTIFICATION_ID_PREFIX}.thread.global"

# Hard cap imposed by the platform notification center on pending requests
MAX_PENDING_NOTIFICATIONS = 64

# ------------------------------------------------------------------------------------------------
# User Info (Property Bag)
# ------------------------------------------------------------------------------------------------
USER_INFO_ANCHOR_TASK = "task"
USER_INFO_ANCHOR_OUTCOME = "outcome"

USER_INFO_CODING_JSON = "json"
USER_INFO_CODING_PROPERTY_LIST = "property_list"

# Values are wrapped so scalars encode as a document
USER_INFO_VALUE_WRAPPER = "value"

# ------------------------------------------------------------------------------------------------
# Storage
# ------------------------------------------------------------------------------------------------
STORAGE_KEY = "task_scheduler_data"
STORAGE_VERSION = 1

DATA_META = "meta"
DATA_META_SCHEMA_VERSION = "schema_version"
DATA_META_LAST_SAVED = "last_saved"
DATA_TASKS = "tasks"
DATA_OUTCOMES = "outcomes"

# Task record keys
DATA_TASK_ID = "id"
DATA_TASK_VERSION = "version"
DATA_TASK_TITLE = "title"
DATA_TASK_INSTRUCTIONS = "instructions"
DATA_TASK_CATEGORY = "category"
DATA_TASK_SCHEDULE = "schedule"
DATA_TASK_COMPLETION_POLICY = "completion_policy"
DATA_TASK_SCHEDULE_NOTIFICATIONS = "schedule_notifications"
DATA_TASK_NOTIFICATION_THREAD = "notification_thread"
DATA_TASK_NOTIFICATION_THREAD_ID = "notification_thread_id"
DATA_TASK_TAGS = "tags"
DATA_TASK_EFFECTIVE_FROM = "effective_from"
DATA_TASK_USER_INFO = "user_info"

# Schedule record keys
DATA_SCHEDULE_START = "start"
DATA_SCHEDULE_DURATION = "duration"
DATA_SCHEDULE_DURATION_SECONDS = "duration_seconds"
DATA_SCHEDULE_RECURRENCE = "recurrence"

# Recurrence record keys
DATA_RECURRENCE_FREQUENCY = "frequency"
DATA_RECURRENCE_INTERVAL = "interval"
DATA_RECURRENCE_END = "end"
DATA_RECURRENCE_END_COUNT = "end_count"
DATA_RECURRENCE_END_DATE = "end_date"
DATA_RECURRENCE_BY_WEEKDAY = "by_weekday"
DATA_RECURRENCE_BY_MONTH_DAY = "by_month_day"
DATA_RECURRENCE_BY_MONTH = "by_month"
DATA_RECURRENCE_BY_HOUR = "by_hour"
DATA_RECURRENCE_BY_MINUTE = "by_minute"
DATA_RECURRENCE_BY_SET_POSITION = "by_set_position"

# Outcome record keys
DATA_OUTCOME_ID = "id"
DATA_OUTCOME_TASK_ID = "task_id"
DATA_OUTCOME_TASK_VERSION = "task_version"
DATA_OUTCOME_COMPLETION_DATE = "completion_date"
DATA_OUTCOME_OCCURRENCE_START = "occurrence_start"
DATA_OUTCOME_USER_INFO = "user_info"

# ------------------------------------------------------------------------------------------------
# Configuration (SchedulerOptions keys and defaults)
# ------------------------------------------------------------------------------------------------
CONF_STRICT_QUERIES = "strict_queries"
CONF_STORAGE_TIMEOUT = "storage_timeout"
CONF_NOTIFICATION_LIMIT = "notification_limit"
CONF_SCHEDULING_INTERVAL_DAYS = "scheduling_interval_days"
CONF_ALL_DAY_NOTIFICATION_TIME = "all_day_notification_time"

DEFAULT_STRICT_QUERIES = False
DEFAULT_STORAGE_TIMEOUT = 10.0
DEFAULT_NOTIFICATION_LIMIT = 30
DEFAULT_SCHEDULING_INTERVAL_DAYS = 28
DEFAULT_ALL_DAY_NOTIFICATION_HOUR = 9
DEFAULT_ALL_DAY_NOTIFICATION_MINUTE = 0

MIN_SCHEDULING_INTERVAL_DAYS = 7

# ------------------------------------------------------------------------------------------------
# Signals (listener event names)
# ------------------------------------------------------------------------------------------------
SIGNAL_TASK_UPDATED = "task_updated"
SIGNAL_OUTCOME_ADDED = "outcome_added"
SIGNAL_TASK_DELETED = "task_deleted"
