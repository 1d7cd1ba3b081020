from __future__ import annotations


class SchedulerConfigurationError(RuntimeError):
    pass


class UnknownCampaignError(SchedulerConfigurationError):
    pass


class RunInProgressError(RuntimeError):
    pass
