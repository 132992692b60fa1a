from fastapi import FastAPI, Body, Depends, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, ConfigDict, EmailStr, field_validator
from typing import Optional, List, Dict, Any, Callable, Union
import os
from datetime import datetime, timedelta, timezone
import jwt
from dotenv import load_dotenv
from starlette.middleware.base import BaseHTTPMiddleware
import asyncio
import time

import catalog
import rankings
from config_cache import ConfigCache, DEFAULT_TTL_SECONDS, gateway_credentials, store_config_fetcher
from errors import NotFound, PortalError, Unauthenticated, Unauthorized
from locator import RecordLocator
from payments import RazorpayGateway, create_payment_order, payment_status
from propagation import PropagationCoordinator

# Load environment variables from this file's directory so running uvicorn from repo root still works
ENV_PATH = os.path.join(os.path.dirname(__file__), ".env")
load_dotenv(dotenv_path=ENV_PATH)

app = FastAPI(title="Training Portal API")

# Check database type from environment
DB_TYPE = os.getenv("DB_TYPE", "file")  # "file" or "mongodb"

if DB_TYPE == "mongodb":
    from mongodb_manager import MongoDBManager
    MONGO_URI = os.getenv("MONGO_URI")
    MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "training_portal")

    if not MONGO_URI:
        raise ValueError("MONGO_URI environment variable not set")

    db = MongoDBManager(mongo_uri=MONGO_URI, db_name=MONGO_DB_NAME)
    print("✅ Using MongoDB for storage")
else:
    from db_manager import DatabaseManager
    db = DatabaseManager(base_dir=os.getenv("DATA_DIR", "data"))
    print("✅ Using file-based storage")

# Environment
APP_ENV = os.getenv("APP_ENV", "development").lower()  # development | production
REQUEST_TIMEOUT = int(os.getenv("REQUEST_TIMEOUT", "30"))
APP_CONFIG_TTL = float(os.getenv("APP_CONFIG_TTL", str(DEFAULT_TTL_SECONDS)))

# CORS Configuration
# In production set CORS_ORIGINS to a comma-separated list, e.g.
#   CORS_ORIGINS=https://portal.example.com,https://admin.example.com
cors_origins_env = os.getenv("CORS_ORIGINS", "").strip()

cors_kwargs: Dict[str, Any] = {
    "allow_credentials": True,
    "allow_methods": ["*"],
    "allow_headers": ["*"],
}

if cors_origins_env:
    cors_kwargs["allow_origins"] = [o.strip() for o in cors_origins_env.split(",") if o.strip()]
else:
    cors_kwargs["allow_origins"] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

app.add_middleware(CORSMiddleware, **cors_kwargs)

# ==================== TIMEOUT MIDDLEWARE ====================

class TimeoutMiddleware(BaseHTTPMiddleware):
    """
    Middleware to enforce request timeouts
    Background propagation already started keeps running, only the response is cut
    """

    def __init__(self, app, timeout: int = 30):
        super().__init__(app)
        self.timeout = timeout

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        try:
            response = await asyncio.wait_for(call_next(request), timeout=self.timeout)

            duration = time.time() - start_time
            if duration > 5:
                print(f"⚠️ Slow request: {request.method} {request.url.path} took {duration:.2f}s")

            return response

        except asyncio.TimeoutError:
            duration = time.time() - start_time
            print(f"⏱️ Request timeout: {request.method} {request.url.path} after {duration:.2f}s")

            return JSONResponse(
                status_code=504,
                content={
                    "success": False,
                    "message": f"Request timeout - operation took longer than {self.timeout} seconds",
                    "error": "GATEWAY_TIMEOUT",
                    "path": str(request.url.path),
                    "method": request.method,
                },
            )


app.add_middleware(TimeoutMiddleware, timeout=REQUEST_TIMEOUT)
print(f"✅ Timeout middleware enabled: {REQUEST_TIMEOUT}s per request")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log all requests with timing"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        print(f"📥 {request.method} {request.url.path}")

        try:
            response = await call_next(request)
            duration = time.time() - start_time

            status_icon = "✅" if response.status_code < 400 else "❌"
            print(f"{status_icon} {request.method} {request.url.path} - {response.status_code} ({duration:.2f}s)")

            response.headers["X-Process-Time"] = f"{duration:.4f}"
            return response

        except Exception as e:
            duration = time.time() - start_time
            print(f"❌ {request.method} {request.url.path} - ERROR ({duration:.2f}s): {str(e)}")
            raise


app.add_middleware(RequestLoggingMiddleware)

# ==================== ERROR HANDLERS ====================

@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    if exc.status_code >= 500:
        print(f"❌ [ERROR] {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in e.get("loc", [])[1:]), "message": e.get("msg")}
        for e in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "message": errors[0]["message"] if errors else "Invalid request",
            "error": "VALIDATION_ERROR",
            "errors": errors,
        },
    )

# Security
security = HTTPBearer(auto_error=False)

# Configuration
SECRET_KEY = os.getenv("SECRET_KEY", "your-secret-key-change-this-in-production")
if APP_ENV != "development" and SECRET_KEY == "your-secret-key-change-this-in-production":
    raise ValueError("SECRET_KEY must be set in production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24  # 1 day

ADMIN_ROLE = "Admin"
STAFF_ROLES = ("Admin", "Trainer")

# ==================== SERVICES ====================

config_cache = ConfigCache(store_config_fetcher(db, "razorpay"))
coordinator = PropagationCoordinator(db, config_cache=config_cache, config_ttl=APP_CONFIG_TTL)
gateway = RazorpayGateway(lambda: gateway_credentials(config_cache, APP_CONFIG_TTL))


def get_store():
    return db


def get_coordinator() -> PropagationCoordinator:
    return coordinator


def get_gateway():
    return gateway

# ==================== PYDANTIC MODELS ====================

class BatchCreateRequest(BaseModel):
    documentId: str
    suffix: str
    batchDetails: Dict[str, Any]
    batchData: Dict[str, Any]


class BatchUpdateRequest(BaseModel):
    batchDetails: Optional[Dict[str, Any]] = None
    batchData: Optional[Dict[str, Any]] = None


class CourseRequest(BaseModel):
    title: str
    courseId: Optional[str] = None
    description: Optional[str] = None
    instructor: Optional[str] = None
    duration: Optional[str] = None
    course_fee: Optional[float] = 0
    courseStatus: Optional[str] = None

    @field_validator("course_fee")
    @classmethod
    def fee_not_negative(cls, v):
        if v is not None and v < 0:
            raise ValueError("course_fee cannot be negative")
        return v


class CourseUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: Optional[str] = None
    description: Optional[str] = None
    instructor: Optional[str] = None
    duration: Optional[str] = None
    course_fee: Optional[float] = None
    courseStatus: Optional[str] = None

    @field_validator("course_fee")
    @classmethod
    def fee_not_negative(cls, v):
        if v is not None and v < 0:
            raise ValueError("course_fee cannot be negative")
        return v


class CourseSectionRequest(BaseModel):
    sectionType: str
    sectionData: Any = None


class StudentDetail(BaseModel):
    studentId: str
    name: Optional[str] = None
    status: Optional[str] = None


class AttendanceRequest(BaseModel):
    courseId: str
    batchId: str
    studentDetails: List[StudentDetail]
    documentId: Optional[str] = None


class AssignmentRequest(BaseModel):
    assignmentName: str
    courseId: str
    courseName: Optional[str] = None
    batchId: str
    duration: Optional[Union[int, str]] = None
    totalMarks: Optional[float] = None
    questions: List[Dict[str, Any]]
    assignmentDate: str
    status: Optional[str] = None

    @field_validator("assignmentName")
    @classmethod
    def name_is_plain(cls, v):
        if not v.strip() or "." in v:
            raise ValueError("assignmentName must be non-empty and cannot contain '.'")
        return v.strip()


class AssignmentUpdateRequest(BaseModel):
    courseId: Optional[str] = None
    courseName: Optional[str] = None
    batchId: Optional[str] = None
    duration: Optional[Union[int, str]] = None
    totalMarks: Optional[float] = None
    questions: Optional[List[Dict[str, Any]]] = None
    assignmentDate: Optional[str] = None
    status: Optional[str] = None


class SubmissionRequest(BaseModel):
    score: Union[float, str]
    traineeId: Optional[str] = None
    name: Optional[str] = None
    email: Optional[EmailStr] = None


class CreateOrderRequest(BaseModel):
    courseId: str
    batchId: str


class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class RoleRequest(BaseModel):
    name: str
    active: bool = True
    permissions: Dict[str, Any] = {}


class RoleUpdateRequest(BaseModel):
    name: Optional[str] = None
    active: Optional[bool] = None
    permissions: Optional[Dict[str, Any]] = None

# ==================== AUTH ====================

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    """Create JWT access token"""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Dict[str, Any]:
    """Verify JWT token and return the caller's identity {uid, email, role}"""
    if credentials is None:
        raise Unauthenticated("No token provided")
    try:
        payload = jwt.decode(credentials.credentials, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token has expired")
    except jwt.PyJWTError:
        raise Unauthenticated("Could not validate credentials")

    uid = payload.get("uid")
    if not uid:
        raise Unauthenticated("Invalid authentication credentials")
    return {"uid": uid, "email": payload.get("sub"), "role": payload.get("role")}


def require_admin(user: Dict[str, Any] = Depends(verify_token)) -> Dict[str, Any]:
    if user.get("role") != ADMIN_ROLE:
        raise Unauthorized("Admin role required")
    return user


def require_staff(user: Dict[str, Any] = Depends(verify_token)) -> Dict[str, Any]:
    if user.get("role") not in STAFF_ROLES:
        raise Unauthorized("Trainer or Admin role required")
    return user

# ==================== API ENDPOINTS ====================

@app.get("/")
def read_root():
    return {
        "message": "Training Portal API",
        "version": "1.0.0",
        "status": "online",
        "database": DB_TYPE,
    }


@app.get("/stats")
def get_stats(store=Depends(get_store)):
    """Get database statistics"""
    return store.get_database_stats()

# ==================== BATCHES ====================

@app.get("/api/batches")
async def list_batches(user: dict = Depends(verify_token), store=Depends(get_store)):
    return {"success": True, "data": catalog.list_batches(store)}


@app.get("/api/batches/{batch_id}")
async def get_batch(batch_id: str, user: dict = Depends(verify_token), store=Depends(get_store)):
    return {"success": True, "data": catalog.get_batch(store, batch_id)}


@app.post("/api/batches", status_code=201)
async def create_batch(request: BatchCreateRequest, user: dict = Depends(require_staff), store=Depends(get_store)):
    entry = catalog.create_batch(store, request.documentId, request.suffix, request.batchDetails, request.batchData)
    return {"success": True, "message": "Batch created successfully", "data": entry}


@app.put("/api/batches/{base_id}/{suffix}")
async def update_batch(base_id: str, suffix: str, request: BatchUpdateRequest,
                       user: dict = Depends(require_staff), store=Depends(get_store)):
    changes = {**(request.batchData or {}), **(request.batchDetails or {})}
    entry = catalog.update_batch(store, base_id, suffix, changes)
    return {"success": True, "message": "Batch updated successfully", "data": entry}


@app.delete("/api/batches/{base_id}/{suffix}")
async def delete_batch(base_id: str, suffix: str, user: dict = Depends(require_staff), store=Depends(get_store)):
    catalog.delete_batch(store, base_id, suffix)
    return {"success": True, "message": "Batch deleted successfully"}

# ==================== COURSES ====================

@app.get("/api/courses")
async def list_courses(status: Optional[str] = None, user: dict = Depends(verify_token), store=Depends(get_store)):
    return {"success": True, "data": catalog.list_courses(store, status)}


@app.get("/api/courses/{course_id}")
async def get_course(course_id: str, user: dict = Depends(verify_token), store=Depends(get_store)):
    return {"success": True, "data": catalog.get_course(store, course_id)}


@app.post("/api/courses", status_code=201)
async def create_course(request: CourseRequest, user: dict = Depends(require_staff), store=Depends(get_store)):
    course = catalog.create_course(store, request.model_dump(), actor=user)
    return {"success": True, "message": "Course created successfully", "data": course}


@app.put("/api/courses/{course_id}")
async def update_course(course_id: str, request: CourseUpdateRequest, user: dict = Depends(require_staff),
                        store=Depends(get_store)):
    course = catalog.update_course(store, course_id, request.model_dump(exclude_none=True), actor=user)
    return {"success": True, "message": "Course updated successfully", "data": course}


@app.get("/api/courses/{course_id}/modules")
async def get_course_modules(course_id: str, user: dict = Depends(verify_token), store=Depends(get_store)):
    return {"success": True, "data": catalog.course_modules(store, course_id)}


@app.put("/api/courses/{course_id}/sections")
async def update_course_section(course_id: str, request: CourseSectionRequest, user: dict = Depends(require_staff),
                                store=Depends(get_store)):
    course = catalog.update_course_section(store, course_id, request.sectionType, request.sectionData, actor=user)
    return {"success": True, "message": f"Course {request.sectionType} updated successfully", "data": course}


@app.delete("/api/courses/{course_id}/sections/{section}")
async def clear_course_section(course_id: str, section: str, user: dict = Depends(require_staff),
                               store=Depends(get_store)):
    course = catalog.clear_course_section(store, course_id, section, actor=user)
    return {"success": True, "message": f"Course {section} deleted successfully", "data": course}


@app.put("/api/courses/{course_id}/{section}")
async def update_named_course_section(course_id: str, section: str, payload: Dict[str, Any] = Body(...),
                                      user: dict = Depends(require_staff), store=Depends(get_store)):
    """Shorthand for one section, e.g. PUT /api/courses/C1/about with {"about": {...}}"""
    course = catalog.update_course_section(store, course_id, section, payload.get(section), actor=user)
    return {"success": True, "message": f"Course {section} updated successfully", "data": course}


@app.delete("/api/courses/{course_id}/{section}")
async def clear_named_course_section(course_id: str, section: str, user: dict = Depends(require_staff),
                                     store=Depends(get_store)):
    course = catalog.clear_course_section(store, course_id, section, actor=user)
    return {"success": True, "message": f"Course {section} deleted successfully", "data": course}


@app.delete("/api/courses/{course_id}")
async def delete_course(course_id: str, user: dict = Depends(require_staff), store=Depends(get_store)):
    catalog.delete_course(store, course_id)
    return {"success": True, "message": "Course deleted successfully"}

# ==================== ATTENDANCE ====================

@app.get("/api/attendance")
async def list_attendance(batchId: Optional[str] = None, user: dict = Depends(verify_token),
                          store=Depends(get_store)):
    return {"success": True, "data": catalog.list_attendance(store, batchId)}


@app.get("/api/attendance/trainees/{batch_id}")
async def batch_trainees(batch_id: str, user: dict = Depends(verify_token), store=Depends(get_store)):
    return {"success": True, "data": catalog.batch_trainees(store, batch_id)}


@app.get("/api/attendance/{record_id}")
async def get_attendance(record_id: str, user: dict = Depends(verify_token), store=Depends(get_store)):
    return {"success": True, "data": catalog.get_attendance(store, record_id)}


@app.post("/api/attendance")
async def record_attendance(request: AttendanceRequest, response: Response, user: dict = Depends(require_staff),
                            coord: PropagationCoordinator = Depends(get_coordinator)):
    result = await coord.record_attendance(
        request.courseId,
        request.batchId,
        [s.model_dump() for s in request.studentDetails],
        actor=user,
        document_id=request.documentId,
    )
    if result["created"]:
        response.status_code = 201
    message = "Attendance recorded successfully" if result["created"] else "Attendance updated successfully"
    return {"success": True, "message": message, "data": result}


@app.delete("/api/attendance/{record_id}")
async def delete_attendance(record_id: str, user: dict = Depends(require_staff),
                            coord: PropagationCoordinator = Depends(get_coordinator)):
    result = await coord.delete_attendance(record_id)
    return {"success": True, "message": "Attendance record deleted successfully", "data": result}

# ==================== ASSIGNMENTS ====================

@app.get("/api/assignment")
async def list_assignments(user: dict = Depends(verify_token), store=Depends(get_store)):
    return {"success": True, "data": catalog.list_assignments(store)}


@app.get("/api/assignment/batch/{batch_id}")
async def list_batch_assignments(batch_id: str, user: dict = Depends(verify_token), store=Depends(get_store)):
    return {"success": True, "data": catalog.list_assignments(store, batch_id)}


@app.get("/api/assignment/{document_id}/{assignment_name}")
async def get_assignment(document_id: str, assignment_name: str, user: dict = Depends(verify_token),
                         store=Depends(get_store)):
    return {"success": True, "data": catalog.get_assignment(store, document_id, assignment_name)}


@app.post("/api/assignment", status_code=201)
async def create_assignment(request: AssignmentRequest, user: dict = Depends(require_staff),
                            store=Depends(get_store)):
    assignment = catalog.create_assignment(store, request.model_dump(), actor=user)
    return {"success": True, "message": "Assignment created successfully", "data": assignment}


@app.put("/api/assignment/{document_id}/{assignment_name}")
async def update_assignment(document_id: str, assignment_name: str, request: AssignmentUpdateRequest,
                            user: dict = Depends(require_staff),
                            coord: PropagationCoordinator = Depends(get_coordinator)):
    result = await coord.update_assignment(
        document_id, assignment_name, request.model_dump(exclude_none=True), actor=user
    )
    return {
        "success": True,
        "message": "Assignment updated successfully",
        "data": result["assignment"],
        "propagation": result["propagation"],
    }


@app.delete("/api/assignment/{document_id}/{assignment_name}")
async def delete_assignment(document_id: str, assignment_name: str, user: dict = Depends(require_staff),
                            coord: PropagationCoordinator = Depends(get_coordinator)):
    result = await coord.delete_assignment(document_id, assignment_name)
    return {"success": True, "message": "Assignment deleted successfully", "data": result}


@app.post("/api/assignment/{document_id}/{assignment_name}/submit")
async def submit_assignment(document_id: str, assignment_name: str, request: SubmissionRequest,
                            user: dict = Depends(verify_token),
                            coord: PropagationCoordinator = Depends(get_coordinator)):
    trainee_id = request.traineeId or user["uid"]
    if trainee_id != user["uid"] and user.get("role") not in STAFF_ROLES:
        raise Unauthorized("Trainees can only submit for themselves")
    result = await coord.submit_assignment(
        document_id,
        assignment_name,
        trainee_id,
        request.score,
        name=request.name,
        email=request.email or (user.get("email") if trainee_id == user["uid"] else None),
    )
    return {"success": True, "message": "Assignment submitted successfully", "data": result}

# ==================== PAYMENTS ====================

@app.post("/api/payments/create-order")
async def create_order(request: CreateOrderRequest, user: dict = Depends(verify_token),
                       store=Depends(get_store), coord: PropagationCoordinator = Depends(get_coordinator),
                       payment_gateway=Depends(get_gateway)):
    order = create_payment_order(
        store,
        payment_gateway,
        lambda: gateway_credentials(coord.config_cache, coord.config_ttl),
        request.courseId,
        request.batchId,
        user_id=user["uid"],
    )
    return {"success": True, **order}


@app.post("/api/payments/verify-payment")
async def verify_payment(request: VerifyPaymentRequest, coord: PropagationCoordinator = Depends(get_coordinator)):
    result = await coord.complete_payment(
        request.razorpay_order_id, request.razorpay_payment_id, request.razorpay_signature
    )
    return {"success": True, "message": "Payment verified successfully", "data": result}


@app.get("/api/payments/status/{order_id}")
async def get_payment_status(order_id: str, user: dict = Depends(verify_token), store=Depends(get_store)):
    return {"success": True, **payment_status(store, order_id)}


@app.get("/api/payments/fees")
async def list_fees(status: Optional[str] = None, limit: int = 50, user: dict = Depends(verify_token),
                    store=Depends(get_store)):
    return {"success": True, "data": catalog.list_fees(store, status, limit)}

# ==================== ENROLLMENTS ====================

@app.get("/api/enrollments/check/{course_id}")
async def check_enrollment(course_id: str, user: dict = Depends(verify_token), store=Depends(get_store)):
    return {"success": True, **catalog.check_enrollment(store, course_id, user["uid"])}

# ==================== RANKINGS ====================

@app.get("/api/ranking/batch/{batch_id}")
async def batch_rankings(batch_id: str, user: dict = Depends(verify_token), store=Depends(get_store)):
    return {"success": True, "data": rankings.batch_rankings(store, batch_id)}


@app.get("/api/ranking/assignment/{document_id}/{assignment_name}")
async def assignment_rankings(document_id: str, assignment_name: str, user: dict = Depends(verify_token),
                              store=Depends(get_store)):
    return {"success": True, "data": rankings.assignment_rankings(store, document_id, assignment_name)}

# ==================== ROLES ====================

@app.get("/api/roles")
async def list_roles(user: dict = Depends(verify_token), store=Depends(get_store)):
    return {"success": True, "data": catalog.list_roles(store)}


@app.post("/api/roles", status_code=201)
async def create_role(request: RoleRequest, user: dict = Depends(require_admin), store=Depends(get_store)):
    role = catalog.create_role(store, request.name, request.permissions, request.active, actor=user)
    return {"success": True, "message": "Role created successfully", "data": role}


@app.put("/api/roles/{role_name}")
async def update_role(role_name: str, request: RoleUpdateRequest, user: dict = Depends(require_admin),
                      store=Depends(get_store)):
    role = catalog.update_role(store, role_name, request.name, request.active, request.permissions, actor=user)
    return {"success": True, "message": "Role updated successfully", "data": role}


@app.delete("/api/roles/{role_name}")
async def delete_role(role_name: str, user: dict = Depends(require_admin), store=Depends(get_store)):
    catalog.delete_role(store, role_name)
    return {"success": True, "message": "Role deleted successfully"}

# ==================== PROGRESS ====================

@app.get("/api/progress/{user_id}/{course_id}")
async def get_progress(user_id: str, course_id: str, user: dict = Depends(verify_token),
                       store=Depends(get_store)):
    if user_id != user["uid"] and user.get("role") not in STAFF_ROLES:
        raise Unauthorized("Not allowed to view this trainee's progress")
    progress = RecordLocator(store).course_progress(user_id, course_id)
    if progress is None:
        raise NotFound("Course progress not found")
    return {"success": True, "data": progress}


@app.post("/api/progress/{user_id}/{course_id}/rebuild")
async def rebuild_progress(user_id: str, course_id: str, user: dict = Depends(require_admin),
                           coord: PropagationCoordinator = Depends(get_coordinator)):
    progress = await asyncio.to_thread(coord.rebuild_progress, user_id, course_id)
    return {"success": True, "message": "Progress rebuilt", "data": progress}


@app.post("/api/propagation/drain")
async def drain_outbox(limit: int = 50, user: dict = Depends(require_admin),
                       coord: PropagationCoordinator = Depends(get_coordinator)):
    return {"success": True, "data": await coord.drain_outbox(limit)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
