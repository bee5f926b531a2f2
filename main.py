import logging
import re
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from gridfs.errors import NoFile
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

import config
import database
import storage
from auth import AccountContext, admin_only, get_current_account, require_roles, staff_only
from database import (
    DatabaseUnavailable,
    count_documents,
    create_document,
    delete_document,
    find_one,
    get_document,
    get_documents,
    update_document,
)
from helpers import (
    BHW_TASKS,
    LIFE_STAGES,
    OVERRIDE_STATUSES,
    apply_stock_status,
    build_month_calendar,
    calculate_bmi,
    construct_full_name,
    count_age_categories,
    derive_stock_status,
    get_age_based_status,
    get_age_category,
    get_age_display,
    get_age_years,
    get_health_status,
    get_week_end,
    get_week_start,
    group_conversations,
    group_medicines,
    group_releases_by_barangay,
    is_expired,
    merge_age_tag,
    month_start,
    sort_households,
)
from logging_config import configure_logging
from pdf_export import HealthRecordPDF
from schemas import (
    BHW,
    Account,
    AccountUpdate,
    Announcement,
    AnnouncementUpdate,
    BHWUpdate,
    Broadcast,
    Household,
    HouseholdUpdate,
    Medicine,
    MedicineRelease,
    MedicineReleaseInput,
    MedicineUpdate,
    Message,
    MonthlyReport,
    Resident,
    ResidentUpdate,
    RestockInput,
    WeeklyReport,
)

configure_logging()
logger = logging.getLogger(__name__)

ACCOUNTS = "accounts"
HOUSEHOLDS = "household"
RESIDENTS = "resident"
MEDICINE = "medicine"
RELEASED = "medicine_released"
ANNOUNCEMENTS = "announcements"
MESSAGES = "messages"
REPORTS = "reports"
MONTHLY_REPORTS = "monthly_reports"


@asynccontextmanager
async def lifespan(app: FastAPI):
    if config.ADMIN_EMAIL and database.db is not None:
        try:
            if not find_one(ACCOUNTS, {"role": "admin"}):
                create_document(ACCOUNTS, {"email": config.ADMIN_EMAIL, "role": "admin", "name": "Administrator"})
                logger.info("Created initial admin account %s", config.ADMIN_EMAIL)
        except PyMongoError:
            logger.exception("Could not create the initial admin account")
    yield


app = FastAPI(title=config.APP_NAME, version=config.APP_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DatabaseUnavailable)
def database_unavailable(request, exc):
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(PyMongoError)
def database_error(request, exc):
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Failed to complete the request. Please try again."})


# Helpers

def serialize(doc: Dict[str, Any]):
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    for k, v in list(d.items()):
        if isinstance(v, datetime):
            d[k] = v.isoformat()
        elif isinstance(v, ObjectId):
            d[k] = str(v)
    return d


def get_or_404(collection_name: str, doc_id: str, label: str) -> Dict[str, Any]:
    try:
        doc = get_document(collection_name, doc_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid id format")
    if not doc:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return doc


def icontains(text: str) -> Dict[str, str]:
    return {"$regex": re.escape(text.strip()), "$options": "i"}


def session_kwargs(session) -> Dict[str, Any]:
    return {"session": session} if session is not None else {}


def read_upload(file: UploadFile, allowed: Tuple[str, ...] = ()) -> bytes:
    content_type = file.content_type or ""
    if allowed and not any(content_type.startswith(prefix) for prefix in allowed):
        raise HTTPException(status_code=400, detail=f"{file.filename} is not a supported file type")
    data = file.file.read()
    if not data:
        raise HTTPException(status_code=400, detail=f"{file.filename} is empty")
    if len(data) > config.MAX_UPLOAD_BYTES:
        limit_mb = config.MAX_UPLOAD_BYTES // (1024 * 1024)
        raise HTTPException(status_code=413, detail=f"{file.filename} is too large. Maximum size is {limit_mb}MB")
    return data


def delete_stored_files(urls: List[str]):
    # A file that cannot be removed must not block the update that replaced it
    for url in urls:
        try:
            storage.delete_file_by_url(url)
        except (PyMongoError, NoFile) as e:
            logger.warning("Could not delete old file %s: %s", url, e)


def pdf_response(content: bytes, filename: str) -> Response:
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def present_resident(doc: Dict[str, Any]) -> Dict[str, Any]:
    d = serialize(doc)
    groups = d.get("marginalized_group") or []
    override = next((g for g in OVERRIDE_STATUSES if g in groups), None)
    bmi = calculate_bmi(d.get("height"), d.get("weight"))
    d["age_display"] = get_age_display(d.get("birth_date"))
    d["age_category"] = get_age_category(d.get("birth_date"))
    d["status"] = get_age_based_status(d.get("birth_date"), override)
    d["bmi"] = {"value": bmi.bmi, "category": bmi.category}
    return d


def present_medicine(doc: Dict[str, Any]) -> Dict[str, Any]:
    d = apply_stock_status(serialize(doc))
    d["expired"] = is_expired(d.get("exp_date"))
    return d


def recount_household_members(household_number: Optional[str]) -> Optional[int]:
    """Re-sync household.total_members with the residents that reference it."""
    if not household_number:
        return None
    total = count_documents(RESIDENTS, {"household_id": household_number})
    database.collection(HOUSEHOLDS).update_one(
        {"household_number": household_number},
        {"$set": {"total_members": total, "updated_at": datetime.now(timezone.utc)}},
    )
    return total


def household_number_taken(number: str, exclude_id: Optional[ObjectId] = None) -> bool:
    q: Dict[str, Any] = {"household_number": number}
    if exclude_id is not None:
        q["_id"] = {"$ne": exclude_id}
    return count_documents(HOUSEHOLDS, q) > 0


def require_household(number: str) -> Dict[str, Any]:
    household = find_one(HOUSEHOLDS, {"household_number": number})
    if not household:
        raise HTTPException(status_code=400, detail=f"Household {number} does not exist")
    return household


def build_resident_document(data: Dict[str, Any]) -> Dict[str, Any]:
    data["full_name"] = construct_full_name(
        data.get("first_name"), data.get("middle_name"), data.get("last_name"), data.get("suffix")
    )
    data["marginalized_group"] = merge_age_tag(data.get("marginalized_group"), data.get("birth_date"))
    data["role"] = "household"
    return data


@app.get("/")
def root():
    return {"message": f"{config.APP_NAME} running"}


@app.get("/test")
def test_database():
    resp = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if config.DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if config.DATABASE_NAME else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    if database.db is not None:
        resp["database"] = "✅ Available"
        resp["connection_status"] = "Connected"
        try:
            resp["collections"] = database.db.list_collection_names()
            resp["database"] = "✅ Connected & Working"
        except PyMongoError as e:
            resp["database"] = f"⚠️ Connected but error: {str(e)[:60]}"
    return resp


@app.get("/schema")
def get_schema():
    return {
        "account": Account.model_json_schema(),
        "bhw": BHW.model_json_schema(),
        "household": Household.model_json_schema(),
        "resident": Resident.model_json_schema(),
        "medicine": Medicine.model_json_schema(),
        "medicine_released": MedicineRelease.model_json_schema(),
        "announcement": Announcement.model_json_schema(),
        "message": Message.model_json_schema(),
        "report": WeeklyReport.model_json_schema(),
        "monthly_report": MonthlyReport.model_json_schema(),
    }


@app.get("/files/{file_id}")
def download_file(file_id: str):
    try:
        data, content_type, filename = storage.open_file(file_id)
    except NoFile:
        raise HTTPException(status_code=404, detail="File not found")
    name = (filename or file_id).rsplit("/", 1)[-1]
    return Response(content=data, media_type=content_type,
                    headers={"Content-Disposition": f'inline; filename="{name}"'})


# Accounts

def ensure_email_free(email: str):
    if count_documents(ACCOUNTS, {"email": email}) > 0:
        raise HTTPException(status_code=409, detail="An account already exists with this email")


@app.post("/sign-up", status_code=201)
def sign_up(payload: Account):
    if payload.role != "household":
        raise HTTPException(status_code=403, detail="Only resident accounts can sign up")
    ensure_email_free(payload.email)
    if payload.household_number:
        require_household(payload.household_number)
    data = payload.model_dump(mode="json")
    data["name"] = data.get("name") or construct_full_name(
        payload.first_name, payload.middle_name, payload.last_name, payload.suffix
    )
    new_id = create_document(ACCOUNTS, data)
    logger.info("Resident account %s signed up", new_id)
    return {"id": new_id}


@app.post("/accounts", status_code=201)
def create_account(payload: Account, _: AccountContext = Depends(admin_only)):
    ensure_email_free(payload.email)
    new_id = create_document(ACCOUNTS, payload)
    return {"id": new_id}


@app.get("/accounts/me")
def get_my_account(account: AccountContext = Depends(get_current_account)):
    return serialize(get_or_404(ACCOUNTS, account.id, "Account"))


@app.patch("/accounts/me")
def update_my_account(payload: AccountUpdate, account: AccountContext = Depends(get_current_account)):
    updates = payload.model_dump(exclude_none=True, mode="json")
    if not updates:
        return {"updated": False}
    return serialize(update_document(ACCOUNTS, account.id, updates))


@app.post("/accounts/me/profile-picture")
def upload_profile_picture(file: UploadFile = File(...), account: AccountContext = Depends(get_current_account)):
    data = read_upload(file, ("image/",))
    old_url = get_or_404(ACCOUNTS, account.id, "Account").get("profile_picture")
    try:
        url = storage.upload_file(storage.build_path("profile-pictures", account.id, file.filename), data, file.content_type)
        update_document(ACCOUNTS, account.id, {"profile_picture": url})
    except PyMongoError:
        logger.exception("Profile picture upload failed for %s", account.id)
        raise HTTPException(status_code=500, detail="Failed to upload profile picture. Please try again.")
    if old_url:
        delete_stored_files([old_url])
    return {"profile_picture": url}


# BHW roster

def get_bhw_or_404(bhw_id: str) -> Dict[str, Any]:
    doc = get_or_404(ACCOUNTS, bhw_id, "BHW")
    if doc.get("role") != "bhw":
        raise HTTPException(status_code=404, detail="BHW not found")
    return doc


@app.get("/bhws")
def list_bhws(search: Optional[str] = None, _: AccountContext = Depends(admin_only)):
    q: Dict[str, Any] = {"role": "bhw"}
    if search:
        q["$or"] = [{"name": icontains(search)}, {"email": icontains(search)}]
    return [serialize(d) for d in get_documents(ACCOUNTS, q, sort=[("name", 1)])]


@app.post("/bhws", status_code=201)
def create_bhw(payload: BHW, _: AccountContext = Depends(admin_only)):
    ensure_email_free(payload.email)
    data = payload.model_dump(mode="json")
    data["role"] = "bhw"
    new_id = create_document(ACCOUNTS, data)
    logger.info("BHW %s created", new_id)
    return {"id": new_id}


@app.get("/bhws/{bhw_id}")
def get_bhw(bhw_id: str, _: AccountContext = Depends(admin_only)):
    return serialize(get_bhw_or_404(bhw_id))


@app.patch("/bhws/{bhw_id}")
def update_bhw(bhw_id: str, payload: BHWUpdate, _: AccountContext = Depends(admin_only)):
    get_bhw_or_404(bhw_id)
    updates = payload.model_dump(exclude_none=True, mode="json")
    if not updates:
        return {"updated": False}
    return serialize(update_document(ACCOUNTS, bhw_id, updates))


@app.delete("/bhws/{bhw_id}")
def delete_bhw(bhw_id: str, _: AccountContext = Depends(admin_only)):
    get_bhw_or_404(bhw_id)
    delete_document(ACCOUNTS, bhw_id)
    return {"deleted": True}


# Households

@app.get("/households")
def list_households(search: Optional[str] = None, _: AccountContext = Depends(staff_only)):
    q: Dict[str, Any] = {}
    if search:
        q["$or"] = [
            {"household_number": icontains(search)},
            {"head_of_household": icontains(search)},
            {"address": icontains(search)},
        ]
    return [serialize(d) for d in sort_households(get_documents(HOUSEHOLDS, q))]


@app.post("/households", status_code=201)
def create_household(payload: Household, _: AccountContext = Depends(staff_only)):
    if household_number_taken(payload.household_number):
        raise HTTPException(status_code=409, detail=f"Household number {payload.household_number} already exists")
    data = payload.model_dump(mode="json")
    data["total_members"] = 0
    new_id = create_document(HOUSEHOLDS, data)
    logger.info("Household %s (%s) created", payload.household_number, new_id)
    return {"id": new_id}


@app.get("/households/{household_id}")
def get_household(household_id: str, _: AccountContext = Depends(staff_only)):
    return serialize(get_or_404(HOUSEHOLDS, household_id, "Household"))


@app.patch("/households/{household_id}")
def update_household(household_id: str, payload: HouseholdUpdate, _: AccountContext = Depends(staff_only)):
    household = get_or_404(HOUSEHOLDS, household_id, "Household")
    updates = payload.model_dump(exclude_none=True, mode="json")
    if not updates:
        return {"updated": False}

    old_number = household["household_number"]
    new_number = updates.get("household_number", old_number).strip()
    renamed = new_number != old_number
    if renamed:
        if household_number_taken(new_number, exclude_id=household["_id"]):
            raise HTTPException(status_code=409, detail=f"Household number {new_number} already exists")
        updates["household_number"] = new_number

    doc = update_document(HOUSEHOLDS, household_id, updates)
    if renamed:
        moved = database.collection(RESIDENTS).update_many(
            {"household_id": old_number}, {"$set": {"household_id": new_number}}
        )
        database.collection(ACCOUNTS).update_many(
            {"household_number": old_number}, {"$set": {"household_number": new_number}}
        )
        doc["total_members"] = recount_household_members(new_number)
        logger.info("Household %s renamed to %s; %d residents moved", old_number, new_number, moved.modified_count)
    return serialize(doc)


@app.delete("/households/{household_id}")
def delete_household(household_id: str, _: AccountContext = Depends(staff_only)):
    household = get_or_404(HOUSEHOLDS, household_id, "Household")
    number = household["household_number"]

    def cascade(session):
        residents = database.collection(RESIDENTS).delete_many({"household_id": number}, **session_kwargs(session))
        database.collection(HOUSEHOLDS).delete_one({"_id": household["_id"]}, **session_kwargs(session))
        return residents.deleted_count

    try:
        residents_deleted = database.run_atomic(cascade)
    except PyMongoError:
        logger.exception("Deleting household %s failed", number)
        raise HTTPException(status_code=500, detail="Failed to delete household. Please try again.")
    logger.info("Household %s deleted with %d residents", number, residents_deleted)
    return {"deleted": True, "residents_deleted": residents_deleted}


@app.get("/households/{household_id}/members")
def list_household_members(household_id: str, _: AccountContext = Depends(staff_only)):
    household = get_or_404(HOUSEHOLDS, household_id, "Household")
    docs = get_documents(RESIDENTS, {"household_id": household["household_number"]}, sort=[("created_at", 1)])
    return [present_resident(d) for d in docs]


@app.post("/households/{household_id}/members", status_code=201)
def add_household_member(household_id: str, payload: Resident, _: AccountContext = Depends(staff_only)):
    household = get_or_404(HOUSEHOLDS, household_id, "Household")
    data = payload.model_dump(mode="json")
    data["household_id"] = household["household_number"]
    new_id = create_document(RESIDENTS, build_resident_document(data))
    total = recount_household_members(household["household_number"])
    return {"id": new_id, "total_members": total}


@app.post("/households/{household_id}/recount")
def recount_household(household_id: str, _: AccountContext = Depends(staff_only)):
    household = get_or_404(HOUSEHOLDS, household_id, "Household")
    return {"total_members": recount_household_members(household["household_number"])}


# Residents

@app.get("/residents")
def list_residents(
    search: Optional[str] = None,
    category: Optional[str] = Query(None, description="Life stage: " + ", ".join(LIFE_STAGES)),
    group: Optional[str] = Query(None, description="Marginalized group tag"),
    household_id: Optional[str] = None,
    _: AccountContext = Depends(staff_only),
):
    q: Dict[str, Any] = {}
    if household_id:
        q["household_id"] = household_id
    if group:
        q["marginalized_group"] = group
    if search:
        q["$or"] = [
            {"full_name": icontains(search)},
            {"household_id": icontains(search)},
            {"address": icontains(search)},
        ]
    rows = [present_resident(d) for d in get_documents(RESIDENTS, q, sort=[("created_at", -1)])]
    if category:
        rows = [r for r in rows if r["age_category"] == category]
    return rows


@app.post("/residents", status_code=201)
def create_resident(payload: Resident, _: AccountContext = Depends(staff_only)):
    if payload.household_id:
        require_household(payload.household_id)
    new_id = create_document(RESIDENTS, build_resident_document(payload.model_dump(mode="json")))
    recount_household_members(payload.household_id)
    return {"id": new_id}


@app.get("/residents/me")
def get_my_resident_record(account: AccountContext = Depends(get_current_account)):
    doc = find_one(RESIDENTS, {"email": account.email}) if account.email else None
    if not doc:
        raise HTTPException(status_code=404, detail="No resident record for this account")
    return present_resident(doc)


@app.get("/residents/{resident_id}")
def get_resident(resident_id: str, _: AccountContext = Depends(staff_only)):
    return present_resident(get_or_404(RESIDENTS, resident_id, "Resident"))


@app.patch("/residents/{resident_id}")
def update_resident(resident_id: str, payload: ResidentUpdate, _: AccountContext = Depends(staff_only)):
    resident = get_or_404(RESIDENTS, resident_id, "Resident")
    updates = payload.model_dump(exclude_none=True, mode="json")
    if not updates:
        return {"updated": False}

    merged = {**resident, **updates}
    if {"first_name", "middle_name", "last_name", "suffix"} & updates.keys():
        updates["full_name"] = construct_full_name(
            merged.get("first_name"), merged.get("middle_name"), merged.get("last_name"), merged.get("suffix")
        )
    updates["marginalized_group"] = merge_age_tag(merged.get("marginalized_group"), merged.get("birth_date"))

    old_household = resident.get("household_id")
    new_household = updates.get("household_id", old_household)
    if new_household != old_household and new_household:
        require_household(new_household)

    doc = update_document(RESIDENTS, resident_id, updates)
    if new_household != old_household:
        recount_household_members(old_household)
        recount_household_members(new_household)
    return present_resident(doc)


@app.delete("/residents/{resident_id}")
def delete_resident(resident_id: str, _: AccountContext = Depends(staff_only)):
    resident = get_or_404(RESIDENTS, resident_id, "Resident")
    delete_document(RESIDENTS, resident_id)
    total = recount_household_members(resident.get("household_id"))
    return {"deleted": True, "total_members": total}


@app.get("/residents/{resident_id}/pdf")
def export_resident_pdf(resident_id: str, _: AccountContext = Depends(staff_only)):
    resident = serialize(get_or_404(RESIDENTS, resident_id, "Resident"))
    household = find_one(HOUSEHOLDS, {"household_number": resident.get("household_id")}) if resident.get("household_id") else None
    return pdf_response(HealthRecordPDF().resident(resident, household), f"resident-{resident_id}.pdf")


# Medicine

@app.get("/medicines")
def list_medicines(
    search: Optional[str] = None,
    status: Optional[str] = Query(None, pattern="^(available|out of stock)$"),
    med_type: Optional[str] = None,
    grouped: bool = False,
    _: AccountContext = Depends(staff_only),
):
    q: Dict[str, Any] = {}
    if med_type:
        q["med_type"] = med_type
    if search:
        q["$or"] = [{"name": icontains(search)}, {"med_code": icontains(search)}, {"description": icontains(search)}]
    rows = [present_medicine(d) for d in get_documents(MEDICINE, q, sort=[("created_at", -1)])]
    if status:
        rows = [r for r in rows if r["status"] == status]
    if grouped:
        return group_medicines(rows)
    return rows


@app.post("/medicines", status_code=201)
def create_medicine(payload: Medicine, _: AccountContext = Depends(staff_only)):
    data = payload.model_dump(mode="json")
    data["status"] = derive_stock_status(data["quantity"])
    new_id = create_document(MEDICINE, data)
    logger.info("Medicine %s batch %s added (%d units)", payload.med_code, new_id, payload.quantity)
    return {"id": new_id}


@app.get("/medicines/released")
def list_released_medicines(
    search: Optional[str] = None,
    release_date: Optional[date] = Query(None, alias="date"),
    barangay: Optional[str] = None,
    _: AccountContext = Depends(staff_only),
):
    q: Dict[str, Any] = {}
    if release_date:
        q["release_date"] = release_date.isoformat()
    if barangay:
        q["barangay"] = {"$regex": f"^{re.escape(barangay.strip())}$", "$options": "i"}
    if search:
        q["$or"] = [
            {"medicine_name": icontains(search)},
            {"medicine_code": icontains(search)},
            {"remarks": icontains(search)},
        ]
    rows = [serialize(d) for d in get_documents(RELEASED, q, sort=[("created_at", -1)])]
    barangays = sorted({(r.get("barangay") or "").strip() for r in rows} - {""})
    return {"records": rows, "by_barangay": group_releases_by_barangay(rows), "barangays": barangays}


@app.get("/medicines/{medicine_id}")
def get_medicine(medicine_id: str, _: AccountContext = Depends(staff_only)):
    return present_medicine(get_or_404(MEDICINE, medicine_id, "Medicine"))


@app.patch("/medicines/{medicine_id}")
def update_medicine(medicine_id: str, payload: MedicineUpdate, _: AccountContext = Depends(staff_only)):
    get_or_404(MEDICINE, medicine_id, "Medicine")
    updates = payload.model_dump(exclude_none=True, mode="json")
    if not updates:
        return {"updated": False}
    if "quantity" in updates:
        updates["status"] = derive_stock_status(updates["quantity"])
    return present_medicine(update_document(MEDICINE, medicine_id, updates))


@app.delete("/medicines/{medicine_id}")
def delete_medicine(medicine_id: str, _: AccountContext = Depends(staff_only)):
    medicine = get_or_404(MEDICINE, medicine_id, "Medicine")
    if not (is_expired(medicine.get("exp_date")) or medicine.get("quantity", 0) <= 0):
        raise HTTPException(status_code=409, detail="Only expired or out of stock medicine can be deleted")
    delete_document(MEDICINE, medicine_id)
    return {"deleted": True}


@app.post("/medicines/{medicine_id}/release")
def release_medicine(medicine_id: str, payload: MedicineReleaseInput,
                     account: AccountContext = Depends(staff_only)):
    medicine = get_or_404(MEDICINE, medicine_id, "Medicine")
    if is_expired(medicine.get("exp_date")):
        raise HTTPException(status_code=400, detail="Cannot release expired medicine")
    remaining = medicine.get("quantity", 0)
    if payload.amount > remaining:
        raise HTTPException(status_code=400, detail=f"Cannot release more than remaining quantity ({remaining})")

    coll = database.collection(MEDICINE)
    # Reserve: only decrement while enough stock is still there
    try:
        updated = coll.find_one_and_update(
            {"_id": medicine["_id"], "quantity": {"$gte": payload.amount}},
            {"$inc": {"quantity": -payload.amount}, "$set": {"updated_at": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER,
        )
    except PyMongoError:
        logger.exception("Releasing medicine %s failed", medicine_id)
        raise HTTPException(status_code=500, detail="Failed to release medicine. Please try again.")
    if updated is None:
        raise HTTPException(status_code=409, detail="Stock changed during release. Reload and try again.")

    new_quantity = updated["quantity"]
    updated["status"] = derive_stock_status(new_quantity)
    coll.update_one({"_id": medicine["_id"]}, {"$set": {"status": updated["status"]}})

    record = MedicineRelease(
        medicine_id=medicine_id,
        medicine_code=medicine.get("med_code", ""),
        medicine_name=medicine.get("name", ""),
        amount=payload.amount,
        release_date=payload.release_date,
        remarks=payload.remarks.strip(),
        previous_quantity=new_quantity + payload.amount,
        new_quantity=new_quantity,
        barangay=payload.barangay,
        released_by=account.name,
    )
    # Commit the audit row, or give the units back
    try:
        release_id = create_document(RELEASED, record)
    except PyMongoError:
        logger.exception("Audit record for medicine %s failed; restoring %d units", medicine_id, payload.amount)
        coll.update_one(
            {"_id": medicine["_id"]},
            {"$inc": {"quantity": payload.amount},
             "$set": {"status": derive_stock_status(new_quantity + payload.amount)}},
        )
        raise HTTPException(status_code=500, detail="Failed to release medicine. Please try again.")

    logger.info("Released %d of %s to %s", payload.amount, medicine.get("med_code"), payload.barangay)
    return {"release_id": release_id, "medicine": present_medicine(updated)}


@app.post("/medicines/{medicine_id}/restock")
def restock_medicine(medicine_id: str, payload: RestockInput, _: AccountContext = Depends(staff_only)):
    medicine = get_or_404(MEDICINE, medicine_id, "Medicine")
    updated = database.collection(MEDICINE).find_one_and_update(
        {"_id": medicine["_id"]},
        {"$inc": {"quantity": payload.amount}, "$set": {"updated_at": datetime.now(timezone.utc)}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=404, detail="Medicine not found")
    status = derive_stock_status(updated["quantity"])
    database.collection(MEDICINE).update_one({"_id": medicine["_id"]}, {"$set": {"status": status}})
    return present_medicine(updated)


@app.get("/medicines/{medicine_id}/pdf")
def export_medicine_pdf(medicine_id: str, _: AccountContext = Depends(staff_only)):
    medicine = present_medicine(get_or_404(MEDICINE, medicine_id, "Medicine"))
    return pdf_response(HealthRecordPDF().medicine(medicine), f"medicine-{medicine.get('med_code', medicine_id)}.pdf")


# Announcements

@app.get("/announcements")
def list_announcements(
    on_date: Optional[date] = Query(None, alias="date"),
    upcoming: bool = False,
    limit: Optional[int] = Query(None, ge=1),
    _: AccountContext = Depends(get_current_account),
):
    q: Dict[str, Any] = {}
    sort = [("date", -1), ("time", -1)]
    if on_date:
        q["date"] = on_date.isoformat()
    elif upcoming:
        q["date"] = {"$gte": date.today().isoformat()}
        sort = [("date", 1), ("time", 1)]
    return [serialize(d) for d in get_documents(ANNOUNCEMENTS, q, limit=limit, sort=sort)]


@app.get("/announcements/calendar")
def announcement_calendar(
    year: Optional[int] = Query(None, ge=1900, le=9999),
    month: Optional[int] = Query(None, ge=0, le=11, description="Zero-based month"),
    _: AccountContext = Depends(get_current_account),
):
    today = date.today()
    year = today.year if year is None else year
    month = today.month - 1 if month is None else month
    weeks = build_month_calendar(year, month)

    prefix = f"{year:04d}-{month + 1:02d}-"
    docs = get_documents(ANNOUNCEMENTS, {"date": {"$regex": f"^{prefix}"}}, sort=[("date", 1), ("time", 1)])
    by_day: Dict[int, List[Dict[str, Any]]] = {}
    for day in (d for week in weeks for d in week if d):
        key = f"{prefix}{day:02d}"
        matches = [serialize(doc) for doc in docs if doc.get("date") == key]
        if matches:
            by_day[day] = matches
    return {
        "year": year,
        "month": month,
        "month_label": date(year, month + 1, 1).strftime("%B %Y"),
        "weeks": weeks,
        "counts": {day: len(items) for day, items in by_day.items()},
        "announcements": by_day,
    }


@app.post("/announcements", status_code=201)
def create_announcement(payload: Announcement, account: AccountContext = Depends(staff_only)):
    data = payload.model_dump(mode="json")
    data["created_by"] = account.name
    data["created_by_id"] = account.id
    return {"id": create_document(ANNOUNCEMENTS, data)}


def get_editable_announcement(announcement_id: str, account: AccountContext) -> Dict[str, Any]:
    doc = get_or_404(ANNOUNCEMENTS, announcement_id, "Announcement")
    if not account.is_admin and doc.get("created_by_id") != account.id:
        raise HTTPException(status_code=403, detail="Only the author can change this announcement")
    return doc


@app.get("/announcements/{announcement_id}")
def get_announcement(announcement_id: str, _: AccountContext = Depends(get_current_account)):
    return serialize(get_or_404(ANNOUNCEMENTS, announcement_id, "Announcement"))


@app.patch("/announcements/{announcement_id}")
def update_announcement(announcement_id: str, payload: AnnouncementUpdate,
                        account: AccountContext = Depends(staff_only)):
    get_editable_announcement(announcement_id, account)
    updates = payload.model_dump(exclude_none=True, mode="json")
    if not updates:
        return {"updated": False}
    return serialize(update_document(ANNOUNCEMENTS, announcement_id, updates))


@app.delete("/announcements/{announcement_id}")
def delete_announcement(announcement_id: str, account: AccountContext = Depends(staff_only)):
    get_editable_announcement(announcement_id, account)
    delete_document(ANNOUNCEMENTS, announcement_id)
    return {"deleted": True}


# Messages

def new_message(sender: AccountContext, receiver: Dict[str, Any], body: str,
                attachment: Optional[str], message_type: Optional[str] = None) -> Dict[str, Any]:
    return {
        "sender_id": sender.id,
        "sender_name": sender.name,
        "receiver_id": str(receiver["_id"]),
        "receiver_name": receiver.get("name") or receiver.get("email"),
        "message": body,
        "attachment": attachment or "",
        "message_type": message_type,
        "status": "unread",
    }


@app.post("/messages/attachments", status_code=201)
def upload_attachment(file: UploadFile = File(...), account: AccountContext = Depends(get_current_account)):
    data = read_upload(file)
    try:
        url = storage.upload_file(storage.build_path("messages", account.id, file.filename), data, file.content_type)
    except PyMongoError:
        logger.exception("Attachment upload failed for %s", account.id)
        raise HTTPException(status_code=500, detail="Failed to upload attachment. Please try again.")
    return {"url": url}


@app.post("/messages", status_code=201)
def send_message(payload: Message, account: AccountContext = Depends(get_current_account)):
    try:
        receiver = get_document(ACCOUNTS, payload.receiver_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid id format")
    if not receiver:
        raise HTTPException(status_code=404, detail="Receiver not found")
    doc = new_message(account, receiver, payload.message, payload.attachment, payload.message_type)
    return {"id": create_document(MESSAGES, doc)}


@app.post("/messages/broadcast", status_code=201)
def broadcast_message(payload: Broadcast, account: AccountContext = Depends(admin_only)):
    receivers = get_documents(ACCOUNTS, {"role": payload.role})
    for receiver in receivers:
        create_document(MESSAGES, new_message(account, receiver, payload.message, payload.attachment))
    logger.info("Broadcast from %s to %d %s accounts", account.id, len(receivers), payload.role)
    return {"sent": len(receivers)}


@app.get("/messages")
def list_messages(box: str = Query("inbox", pattern="^(inbox|sent)$"),
                  account: AccountContext = Depends(get_current_account)):
    field = "receiver_id" if box == "inbox" else "sender_id"
    docs = get_documents(MESSAGES, {field: account.id}, sort=[("created_at", -1)])
    return [serialize(d) for d in docs]


@app.get("/messages/conversations")
def list_conversations(account: AccountContext = Depends(get_current_account)):
    docs = get_documents(MESSAGES, {"$or": [{"sender_id": account.id}, {"receiver_id": account.id}]})
    return group_conversations([serialize(d) for d in docs], account.id)


@app.get("/messages/unread-count")
def unread_count(account: AccountContext = Depends(get_current_account)):
    return {"unread": count_documents(MESSAGES, {"receiver_id": account.id, "status": "unread"})}


@app.post("/messages/{message_id}/read")
def mark_message_read(message_id: str, account: AccountContext = Depends(get_current_account)):
    msg = get_or_404(MESSAGES, message_id, "Message")
    if msg.get("receiver_id") != account.id:
        raise HTTPException(status_code=403, detail="Only the receiver can mark a message as read")
    return serialize(update_document(MESSAGES, message_id, {"status": "read"}))


# Weekly and monthly reports

@app.get("/reports/tasks")
def list_report_tasks():
    return {"tasks": BHW_TASKS}


def resolve_bhw_id(account: AccountContext, bhw_id: Optional[str]) -> str:
    if bhw_id and bhw_id != account.id:
        if not account.is_admin:
            raise HTTPException(status_code=403, detail="Not allowed to view other BHW reports")
        return bhw_id
    return account.id


@app.get("/reports/weekly")
def get_weekly_report(week_start: Optional[date] = None, bhw_id: Optional[str] = None,
                      account: AccountContext = Depends(staff_only)):
    start = get_week_start(week_start)
    owner = resolve_bhw_id(account, bhw_id)
    doc = find_one(REPORTS, {"bhw_id": owner, "week_start": start.isoformat()})
    return {
        "week_start": start.isoformat(),
        "week_end": get_week_end(start).isoformat(),
        "report": serialize(doc) if doc else None,
    }


@app.put("/reports/weekly")
def save_weekly_report(payload: WeeklyReport, account: AccountContext = Depends(require_roles("bhw"))):
    start = get_week_start(payload.week_start)
    if start > get_week_start():
        raise HTTPException(status_code=400, detail="Cannot submit a report for a future week")
    data = {
        "bhw_id": account.id,
        "bhw_name": account.name,
        "task_list": payload.task_list,
        "remarks": payload.remarks.strip(),
        "week_start": start.isoformat(),
    }
    existing = find_one(REPORTS, {"bhw_id": account.id, "week_start": data["week_start"]})
    try:
        if existing:
            report_id = str(existing["_id"])
            update_document(REPORTS, report_id, data)
        else:
            report_id = create_document(REPORTS, data)
    except PyMongoError:
        logger.exception("Saving weekly report for %s failed", account.id)
        raise HTTPException(status_code=500, detail="Error saving report. Please try again.")
    return {"id": report_id, "created": existing is None, "week_start": data["week_start"]}


@app.get("/reports")
def list_weekly_reports(bhw_id: Optional[str] = None, week_start: Optional[date] = None,
                        _: AccountContext = Depends(admin_only)):
    q: Dict[str, Any] = {}
    if bhw_id:
        q["bhw_id"] = bhw_id
    if week_start:
        q["week_start"] = get_week_start(week_start).isoformat()
    return [serialize(d) for d in get_documents(REPORTS, q, sort=[("week_start", -1)])]


@app.get("/reports/weekly/{report_id}/pdf")
def export_weekly_report_pdf(report_id: str, account: AccountContext = Depends(staff_only)):
    report = serialize(get_or_404(REPORTS, report_id, "Report"))
    resolve_bhw_id(account, report.get("bhw_id"))
    try:
        bhw = get_document(ACCOUNTS, report["bhw_id"])
    except ValueError:
        bhw = None
    return pdf_response(HealthRecordPDF().weekly_report(report, bhw), f"weekly-report-{report['week_start']}.pdf")


@app.get("/reports/monthly")
def list_monthly_reports(month: Optional[str] = Query(None, pattern=r"^\d{4}-(0[1-9]|1[0-2])$"),
                         bhw_id: Optional[str] = None,
                         account: AccountContext = Depends(staff_only)):
    q: Dict[str, Any] = {}
    if account.is_admin:
        if bhw_id:
            q["bhw_id"] = bhw_id
    else:
        q["bhw_id"] = resolve_bhw_id(account, bhw_id)
    if month:
        q["report_date"] = month_start(month)
    return [serialize(d) for d in get_documents(MONTHLY_REPORTS, q, sort=[("report_date", -1)])]


@app.post("/reports/monthly")
def submit_monthly_report(month: str = Form(..., pattern=r"^\d{4}-(0[1-9]|1[0-2])$"),
                          files: List[UploadFile] = File(...),
                          account: AccountContext = Depends(require_roles("bhw"))):
    if not files:
        raise HTTPException(status_code=400, detail="Please select at least one file")
    contents = [(f, read_upload(f, config.MONTHLY_REPORT_CONTENT_TYPES)) for f in files]

    try:
        urls = [
            storage.upload_file(storage.build_path("monthly-reports", account.id, f.filename, month), data, f.content_type)
            for f, data in contents
        ]
    except PyMongoError:
        logger.exception("Monthly report upload failed for %s", account.id)
        raise HTTPException(status_code=500, detail="Failed to upload files. Please try again.")

    report = MonthlyReport(
        bhw_id=account.id,
        bhw_name=account.name,
        report_date=month_start(month),
        contents=urls,
        barangay=account.barangay or "",
    )
    existing = find_one(MONTHLY_REPORTS, {"bhw_id": account.id, "report_date": report.report_date})
    try:
        if existing:
            report_id = str(existing["_id"])
            update_document(MONTHLY_REPORTS, report_id, report.model_dump(mode="json"))
        else:
            report_id = create_document(MONTHLY_REPORTS, report)
    except PyMongoError:
        logger.exception("Saving monthly report %s for %s failed", report.report_date, account.id)
        delete_stored_files(urls)
        raise HTTPException(status_code=500, detail="Failed to submit report. Please try again.")
    if existing:
        delete_stored_files(existing.get("contents") or [])
    logger.info("Monthly report %s for %s stored with %d files", report.report_date, account.id, len(urls))
    return {"id": report_id, "created": existing is None, "contents": urls}


@app.delete("/reports/monthly/{report_id}/contents")
def remove_monthly_report_file(report_id: str, url: str = Query(..., min_length=1),
                               account: AccountContext = Depends(require_roles("bhw"))):
    report = get_or_404(MONTHLY_REPORTS, report_id, "Report")
    if report.get("bhw_id") != account.id:
        raise HTTPException(status_code=403, detail="Only the author can change this report")
    contents = report.get("contents") or []
    if url not in contents:
        raise HTTPException(status_code=404, detail="File not found in report")
    remaining = [u for u in contents if u != url]
    update_document(MONTHLY_REPORTS, report_id, {"contents": remaining})
    delete_stored_files([url])
    return {"id": report_id, "contents": remaining}


# Dashboards

@app.get("/dashboard/admin")
def admin_dashboard(_: AccountContext = Depends(admin_only)):
    residents = get_documents(RESIDENTS, {})
    recent = get_documents(RESIDENTS, {}, limit=config.RECENT_RESIDENTS_LIMIT, sort=[("created_at", -1)])
    return {
        "total_population": len(residents),
        "age_categories": count_age_categories(residents),
        "patients_served": count_documents(MESSAGES, {"message_type": "consultation"}),
        "upcoming_events": count_documents(ANNOUNCEMENTS, {"date": {"$gte": date.today().isoformat()}}),
        "reports_submitted": count_documents(REPORTS),
        "recent_residents": [present_resident(r) for r in recent],
    }


@app.get("/dashboard/resident")
def resident_dashboard(account: AccountContext = Depends(get_current_account)):
    messages = get_documents(MESSAGES, {"receiver_id": account.id},
                             limit=config.RECENT_LIMIT, sort=[("created_at", -1)])
    announcements = get_documents(ANNOUNCEMENTS, {"date": {"$gte": date.today().isoformat()}},
                                  limit=config.RECENT_LIMIT, sort=[("date", 1), ("time", 1)])
    resident = find_one(RESIDENTS, {"email": account.email}) if account.email else None

    health: Dict[str, Any] = {}
    if resident:
        bmi = calculate_bmi(resident.get("height"), resident.get("weight"))
        health = {
            "bmi": bmi.bmi,
            "bmi_category": bmi.category,
            "age": get_age_years(resident.get("birth_date")),
            "health_status": get_health_status(resident.get("marginalized_group") or [], bmi.bmi),
        }
    return {
        "recent_messages": [serialize(m) for m in messages],
        "upcoming_announcements": [serialize(a) for a in announcements],
        "resident": present_resident(resident) if resident else None,
        "health": health,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
