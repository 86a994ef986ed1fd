# -*- coding: utf-8 -*-
"""Permission catalog seed data and role default bundles.

``ROLE_DEFAULT_PERMISSIONS`` is the one mapping from role type to the permission slugs a
relationship of that role receives on acceptance. Invitations and access checks both
read it from here.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, List

CATEGORIES = ("nutrition", "workouts", "weight", "photos", "checkins", "fasting", "profile")
PERMISSION_TYPES = ("read", "write")
ROLE_TYPES = ("nutritionist", "trainer", "coach")

# Visible on any active relationship without an explicit read grant.
DEFAULT_VISIBLE_CATEGORIES: FrozenSet[str] = frozenset({"profile"})

SEED_DEFINITIONS: List[Dict[str, object]] = [
    # Shared (read)
    {
        "slug": "view_nutrition",
        "display_name": "View Nutrition Logs",
        "description": "View food logs and intake history",
        "category": "nutrition",
        "permission_type": "read",
        "is_exclusive": False,
        "sort_order": 10,
    },
    {
        "slug": "view_workouts",
        "display_name": "View Workout Sessions",
        "description": "View completed workout sessions and exercise history",
        "category": "workouts",
        "permission_type": "read",
        "is_exclusive": False,
        "sort_order": 20,
    },
    {
        "slug": "view_weight",
        "display_name": "View Weight Data",
        "description": "View weigh-ins and body measurements",
        "category": "weight",
        "permission_type": "read",
        "is_exclusive": False,
        "sort_order": 30,
    },
    {
        "slug": "view_progress_photos",
        "display_name": "View Progress Photos",
        "description": "View uploaded progress photos",
        "category": "photos",
        "permission_type": "read",
        "is_exclusive": False,
        "sort_order": 40,
    },
    {
        "slug": "view_fasting",
        "display_name": "View Fasting Data",
        "description": "View fasting history and patterns",
        "category": "fasting",
        "permission_type": "read",
        "is_exclusive": False,
        "sort_order": 50,
    },
    {
        "slug": "view_checkins",
        "display_name": "View Check-in Submissions",
        "description": "View submitted weekly check-ins",
        "category": "checkins",
        "permission_type": "read",
        "is_exclusive": False,
        "sort_order": 60,
    },
    {
        "slug": "view_profile",
        "display_name": "View Profile Information",
        "description": "View basic profile information (height, age, etc.)",
        "category": "profile",
        "permission_type": "read",
        "is_exclusive": False,
        "sort_order": 70,
    },
    # Exclusive (write)
    {
        "slug": "set_nutrition_targets",
        "display_name": "Set Nutrition Targets",
        "description": "Set calorie, macro, and micronutrient goals",
        "category": "nutrition",
        "permission_type": "write",
        "is_exclusive": True,
        "sort_order": 15,
    },
    {
        "slug": "set_weight_targets",
        "display_name": "Set Weight Targets",
        "description": "Set goal weight and body composition targets",
        "category": "weight",
        "permission_type": "write",
        "is_exclusive": True,
        "sort_order": 35,
    },
    {
        "slug": "assign_programmes",
        "display_name": "Assign Workout Programmes",
        "description": "Create and assign workout programmes",
        "category": "workouts",
        "permission_type": "write",
        "is_exclusive": True,
        "sort_order": 25,
    },
    {
        "slug": "assign_checkins",
        "display_name": "Assign Check-in Templates",
        "description": "Assign weekly check-in templates",
        "category": "checkins",
        "permission_type": "write",
        "is_exclusive": True,
        "sort_order": 65,
    },
    {
        "slug": "set_fasting_schedule",
        "display_name": "Set Fasting Schedule",
        "description": "Configure fasting windows and schedules",
        "category": "fasting",
        "permission_type": "write",
        "is_exclusive": True,
        "sort_order": 55,
    },
]

ROLE_DEFAULT_PERMISSIONS: Dict[str, tuple[str, ...]] = {
    "nutritionist": (
        "view_nutrition",
        "view_weight",
        "view_profile",
        "set_nutrition_targets",
    ),
    "trainer": (
        "view_workouts",
        "view_weight",
        "view_profile",
        "assign_programmes",
        "assign_checkins",
    ),
    "coach": (
        "view_nutrition",
        "view_workouts",
        "view_weight",
        "view_progress_photos",
        "view_fasting",
        "view_checkins",
        "view_profile",
        "set_nutrition_targets",
        "set_weight_targets",
        "assign_programmes",
        "assign_checkins",
        "set_fasting_schedule",
    ),
}
