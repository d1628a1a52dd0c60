def get_internal_job_stage_catalog():
    return {
        "stages": [
            {
                "stage": "evaluate_rules",
                "name": "Evaluate auto-gift rules",
                "description": "Create a pending_selection execution for every rule occurrence inside its notification window.",
                "defaults": {
                    "job_key": "AUTOGIFT_EVALUATE_RULES",
                    "params": {},
                    "schedule": {"type": "cron", "cron": "0 6 * * *", "timezone": "UTC"},
                    "active": True,
                },
            },
            {
                "stage": "select_products",
                "name": "Select gift products",
                "description": "Pick products for pending executions from the wishlist, the AI advisor or the catalog.",
                "defaults": {
                    "job_key": "AUTOGIFT_SELECT_PRODUCTS",
                    "params": {"limit": 50},
                    "schedule": {"type": "cron", "cron": "*/15 * * * *", "timezone": "UTC"},
                    "active": True,
                },
            },
            {
                "stage": "sweep_approvals",
                "name": "Expire stale approvals",
                "description": "Move executions whose approval token lapsed to expired.",
                "defaults": {
                    "job_key": "AUTOGIFT_SWEEP_APPROVALS",
                    "params": {"limit": 200},
                    "schedule": {"type": "cron", "cron": "0 * * * *", "timezone": "UTC"},
                    "active": True,
                },
            },
            {
                "stage": "authorize_payments",
                "name": "Authorize approved gifts",
                "description": "Place a payment hold for approved executions and create their orders.",
                "defaults": {
                    "job_key": "AUTOGIFT_AUTHORIZE_PAYMENTS",
                    "params": {"limit": 50},
                    "schedule": {"type": "cron", "cron": "*/10 * * * *", "timezone": "UTC"},
                    "active": True,
                },
            },
            {
                "stage": "capture_payments",
                "name": "Capture due payments",
                "description": "Capture authorized payments whose capture date has arrived.",
                "defaults": {
                    "job_key": "AUTOGIFT_CAPTURE_PAYMENTS",
                    "params": {"limit": 50},
                    "schedule": {"type": "cron", "cron": "0 9 * * *", "timezone": "UTC"},
                    "active": True,
                },
            },
            {
                "stage": "reconcile_funding",
                "name": "Reconcile vendor funding",
                "description": "Compare the vendor balance with outstanding orders, block what cannot be covered and raise alerts.",
                "defaults": {
                    "job_key": "AUTOGIFT_RECONCILE_FUNDING",
                    "params": {},
                    "schedule": {"type": "cron", "cron": "0 */4 * * *", "timezone": "UTC"},
                    "active": True,
                },
            },
            {
                "stage": "submit_orders",
                "name": "Submit funded orders",
                "description": "Place vendor orders for captured and funded gifts due for delivery.",
                "defaults": {
                    "job_key": "AUTOGIFT_SUBMIT_ORDERS",
                    "params": {"limit": 50},
                    "schedule": {"type": "cron", "cron": "30 9 * * *", "timezone": "UTC"},
                    "active": True,
                },
            },
            {
                "stage": "sync_vendor_orders",
                "name": "Sync vendor orders",
                "description": "Pull shipping and delivery status for submitted orders from the vendor.",
                "defaults": {
                    "job_key": "AUTOGIFT_SYNC_VENDOR_ORDERS",
                    "params": {"limit": 50},
                    "schedule": {"type": "cron", "cron": "*/30 * * * *", "timezone": "UTC"},
                    "active": True,
                },
            },
        ],
        "notes": [
            "These are UI presets only. Backend enforcement is done by InternalJobCreate schema + validation.",
            "Run reconcile_funding before submit_orders so blocked orders are not submitted.",
        ],
    }
