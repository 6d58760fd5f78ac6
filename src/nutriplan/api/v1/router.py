"""API v1 Router - Aggregates all v1 endpoints"""

from fastapi import APIRouter

from nutriplan.api.v1.assessments import router as assessments_router
from nutriplan.api.v1.audit import router as audit_router
from nutriplan.api.v1.auth import router as auth_router
from nutriplan.api.v1.consultations import router as consultations_router
from nutriplan.api.v1.diet_plans import router as diet_plans_router
from nutriplan.api.v1.firebase import router as firebase_router
from nutriplan.api.v1.hybrid import router as hybrid_router
from nutriplan.api.v1.invites import router as invites_router
from nutriplan.api.v1.metrics import router as metrics_router
from nutriplan.api.v1.notifications import router as notifications_router
from nutriplan.api.v1.patients import router as patients_router
from nutriplan.api.v1.users import router as users_router

# Create the main API router
api_router = APIRouter()

# Include all sub-routers
api_router.include_router(auth_router, prefix="/auth", tags=["Authentication"])
api_router.include_router(firebase_router, prefix="/firebase", tags=["Firebase Auth"])
api_router.include_router(hybrid_router, prefix="/hybrid", tags=["Hybrid Auth"])
api_router.include_router(
    notifications_router, prefix="/notifications", tags=["Notifications"]
)
api_router.include_router(users_router, prefix="/users", tags=["Users"])
api_router.include_router(patients_router, prefix="/patients", tags=["Patients"])
api_router.include_router(
    assessments_router, prefix="/assessments", tags=["Assessments"]
)
api_router.include_router(diet_plans_router, prefix="/diet-plans", tags=["Diet Plans"])
api_router.include_router(
    consultations_router, prefix="/consultations", tags=["Consultations"]
)
api_router.include_router(invites_router, prefix="/invites", tags=["Invites"])
api_router.include_router(audit_router, prefix="/audit", tags=["Audit"])
api_router.include_router(metrics_router, prefix="/metrics", tags=["Metrics"])
