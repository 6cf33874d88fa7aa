"""HTTP surface: cron trigger, admin review queue and statistics, manual RFQ form."""
