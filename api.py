"""
api.py - FastAPI HTTP layer for the catalog service.

Every edit follows the same order: load the user's state, compute the new
tree or contact list with the pure core functions, return it, and only
then persist it in a background task. A failed save is logged; the client
already has the new value and decides how to react.

No tree, pricing or duplicate logic lives here.
"""

from __future__ import annotations

import os
import threading
from typing import Any, Optional, Union

import uvicorn
from dotenv import load_dotenv
from fastapi import BackgroundTasks, Body, FastAPI, File, Form, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from bulk_text import BulkImportError, bulk_edit_people, export_people_by_category, export_to_text, import_from_text
from catalog_store import CatalogState, CatalogStore, PostgresCatalogStore, get_store, validate_user_id
from duplicates import find_duplicate_groups, find_potential_duplicates, merge_duplicate_group
from explain import format_profit, get_duplicate_explanation
from logging_config import get_logger, setup_logging
from models import ContactCategory, PersonRecord, SortType
from normalize import parse_number, to_title_case
from phones import validate_phone_numbers
from photo_cache import PhotoCache
from price_tree import PriceTreeError, add_item, delete_item, edit_category, edit_item, filter_data, sort_data
from stats import get_category_counts, get_price_list_stats, sort_categories
from units import calculate_profit, convert, lookup_unit
from vcf import VCFParseError, import_vcf

try:
    load_dotenv()
except UnicodeDecodeError:
    # Legacy Windows-encoded .env files.
    load_dotenv(encoding="cp1252")

logger = get_logger("catalog-api")

app = FastAPI(
    title="Catalog & Contacts API",
    version="1.0.0",
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)

_cors_origins = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins or ["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

MAX_VCF_BYTES = 5 * 1024 * 1024

catalog_store: Union[CatalogStore, PostgresCatalogStore] = get_store()
photo_cache = PhotoCache(os.getenv("PHOTO_CACHE_FILE") or None)
_save_lock = threading.Lock()


def _load_state(user_id: str) -> CatalogState:
    try:
        validate_user_id(user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return catalog_store.load(user_id)


def _persist(user_id: str, state: CatalogState) -> None:
    """Background save; runs after the response has been sent."""
    with _save_lock:
        try:
            catalog_store.save(user_id, state)
        except Exception as exc:
            logger.error(
                "catalog_persist_error | user_id=%s | error_type=%s | error=%s",
                user_id,
                type(exc).__name__,
                exc,
                exc_info=True,
            )


def _schedule_save(background_tasks: BackgroundTasks, user_id: str, state: CatalogState) -> None:
    background_tasks.add_task(_persist, user_id, state.model_copy(deep=True))


def _clean_form(form: Any) -> dict[str, Any]:
    """Reject a nameless form and title-case the name."""
    if not isinstance(form, dict):
        raise HTTPException(status_code=400, detail="form must be an object")
    name = str(form.get("name") or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    if "." in name:
        raise HTTPException(status_code=400, detail="name cannot contain '.'")
    return {**form, "name": to_title_case(name)}


def _tree_response(state: CatalogState) -> dict[str, Any]:
    return {"user_id": state.user_id, "tree": state.price_tree}


def _contacts_response(state: CatalogState) -> dict[str, Any]:
    return {
        "user_id": state.user_id,
        "people": [person.model_dump(mode="json") for person in state.people],
        "categories": [
            category.model_dump(mode="json", by_alias=True)
            for category in sort_categories(state.categories)
        ],
        "counts": get_category_counts(state.people, state.categories),
    }


def _bulk_error_detail(exc: BulkImportError) -> dict[str, Any]:
    return {
        "message": "Bulk text has errors",
        "errors": exc.errors,
        "errors_by_category": exc.errors_by_category,
    }


@app.get("/health")
def health() -> dict[str, str]:
    """Service health check."""
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Price list
# ---------------------------------------------------------------------------


@app.get("/users/{user_id}/catalog")
def get_catalog(user_id: str) -> dict[str, Any]:
    return _tree_response(_load_state(user_id))


@app.put("/users/{user_id}/catalog")
def put_catalog(user_id: str, background_tasks: BackgroundTasks, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """Replace the whole price tree."""
    state = _load_state(user_id)
    tree = payload.get("tree")
    if not isinstance(tree, dict):
        raise HTTPException(status_code=400, detail="tree must be an object")
    state.price_tree = tree
    _schedule_save(background_tasks, user_id, state)
    return _tree_response(state)


@app.post("/users/{user_id}/catalog/items")
def add_catalog_node(user_id: str, background_tasks: BackgroundTasks, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """Add a category or item. Body: {parent_path, kind, form}."""
    state = _load_state(user_id)
    form = _clean_form(payload.get("form"))
    try:
        state.price_tree = add_item(
            state.price_tree,
            str(payload.get("parent_path") or ""),
            str(payload.get("kind") or "item"),
            form,
        )
    except PriceTreeError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    _schedule_save(background_tasks, user_id, state)
    return _tree_response(state)


@app.patch("/users/{user_id}/catalog/items")
def edit_catalog_item(user_id: str, background_tasks: BackgroundTasks, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """Edit (and optionally rename) an item. Body: {path, form}."""
    state = _load_state(user_id)
    form = _clean_form(payload.get("form"))
    try:
        state.price_tree = edit_item(state.price_tree, str(payload.get("path") or ""), form)
    except PriceTreeError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    _schedule_save(background_tasks, user_id, state)
    return _tree_response(state)


@app.delete("/users/{user_id}/catalog/items")
def delete_catalog_node(user_id: str, background_tasks: BackgroundTasks, path: str = Query(...)) -> dict[str, Any]:
    state = _load_state(user_id)
    try:
        state.price_tree = delete_item(state.price_tree, path)
    except PriceTreeError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    _schedule_save(background_tasks, user_id, state)
    return _tree_response(state)


@app.patch("/users/{user_id}/catalog/categories")
def edit_catalog_category(user_id: str, background_tasks: BackgroundTasks, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """Rename a category / update its notes. Body: {path, name, notes?}."""
    state = _load_state(user_id)
    form = _clean_form({"name": payload.get("name")})
    notes = payload.get("notes")
    try:
        state.price_tree = edit_category(
            state.price_tree,
            str(payload.get("path") or ""),
            form["name"],
            None if notes is None else str(notes),
        )
    except PriceTreeError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    _schedule_save(background_tasks, user_id, state)
    return _tree_response(state)


@app.get("/users/{user_id}/catalog/search")
def search_catalog(user_id: str, q: str = "", sort: str = "none") -> dict[str, Any]:
    """Filter then sort; nothing is saved."""
    try:
        sort_type = SortType(sort)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Unknown sort type: {sort}") from exc

    state = _load_state(user_id)
    tree = sort_data(filter_data(state.price_tree, q), sort_type)
    return {"user_id": user_id, "query": q, "sort": sort_type.value, "tree": tree}


@app.get("/users/{user_id}/catalog/bulk-text")
def get_catalog_text(user_id: str) -> dict[str, str]:
    state = _load_state(user_id)
    return {"user_id": user_id, "text": export_to_text(state.price_tree)}


@app.put("/users/{user_id}/catalog/bulk-text")
def put_catalog_text(user_id: str, background_tasks: BackgroundTasks, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """Replace the price tree with the parsed bulk text. Body: {text}."""
    state = _load_state(user_id)
    text = payload.get("text")
    if not isinstance(text, str):
        raise HTTPException(status_code=400, detail="text must be a string")
    state.price_tree = import_from_text(text)
    _schedule_save(background_tasks, user_id, state)
    return _tree_response(state)


@app.get("/users/{user_id}/catalog/stats")
def catalog_stats(user_id: str) -> dict[str, Any]:
    state = _load_state(user_id)
    return get_price_list_stats(state.price_tree).model_dump(mode="json")


# ---------------------------------------------------------------------------
# Units
# ---------------------------------------------------------------------------


@app.get("/units/convert")
def convert_units(value: float, from_unit: str, to_unit: str) -> dict[str, Any]:
    """Convert a price per `from_unit` into a price per `to_unit`."""
    result = convert(value, from_unit, to_unit)
    from_def, to_def = lookup_unit(from_unit), lookup_unit(to_unit)
    return {
        "value": value,
        "from_unit": from_def.name if from_def else from_unit,
        "to_unit": to_def.name if to_def else to_unit,
        "result": result,
        "convertible": result is not None,
    }


@app.get("/units/profit")
def unit_profit(sell: str, sell_unit: str, cost: str, cost_unit: str) -> dict[str, Any]:
    result = calculate_profit(parse_number(sell), sell_unit, parse_number(cost), cost_unit)
    return {**result.model_dump(mode="json"), "display": format_profit(result)}


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------


@app.get("/users/{user_id}/contacts")
def get_contacts(user_id: str) -> dict[str, Any]:
    return _contacts_response(_load_state(user_id))


@app.put("/users/{user_id}/contacts")
def put_contacts(user_id: str, background_tasks: BackgroundTasks, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """Replace contacts and (optionally) categories. Body: {people, categories?}."""
    state = _load_state(user_id)
    try:
        state.people = [PersonRecord.model_validate(person) for person in payload.get("people") or []]
        if payload.get("categories"):
            state.categories = [ContactCategory.model_validate(category) for category in payload["categories"]]
    except (ValueError, ValidationError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    _schedule_save(background_tasks, user_id, state)
    return _contacts_response(state)


@app.post("/users/{user_id}/contacts/duplicates/check")
def check_contact_duplicates(user_id: str, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """Advisory duplicate check for a contact about to be added."""
    state = _load_state(user_id)
    try:
        contact = PersonRecord.model_validate(payload.get("contact") or {})
        threshold = float(payload.get("threshold", 0.5))
    except (TypeError, ValueError, ValidationError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    others = [person for person in state.people if person.id != contact.id]
    matches = find_potential_duplicates(contact, others, threshold)
    return {
        "user_id": user_id,
        "matches": [
            {**match.model_dump(mode="json"), "explanation": get_duplicate_explanation(match)}
            for match in matches
        ],
    }


@app.get("/users/{user_id}/contacts/duplicates/groups")
def duplicate_groups(user_id: str) -> dict[str, Any]:
    state = _load_state(user_id)
    groups = find_duplicate_groups(state.people)
    return {"user_id": user_id, "groups": [group.model_dump(mode="json") for group in groups]}


@app.post("/users/{user_id}/contacts/merge")
def merge_contacts_endpoint(user_id: str, background_tasks: BackgroundTasks, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """Merge a duplicate group into one contact. Body: {keep_id, contact_ids}."""
    state = _load_state(user_id)
    keep_id = str(payload.get("keep_id") or "")
    wanted = {str(contact_id) for contact_id in payload.get("contact_ids") or []}
    wanted.add(keep_id)
    members = [person for person in state.people if person.id in wanted]

    try:
        merged, removed = merge_duplicate_group(members, keep_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    removed_ids = set(removed)
    state.people = [
        merged if person.id == keep_id else person
        for person in state.people
        if person.id not in removed_ids
    ]
    for contact_id in removed:
        photo_cache.remove(contact_id)

    _schedule_save(background_tasks, user_id, state)
    return {**_contacts_response(state), "merged": merged.model_dump(mode="json"), "removed": removed}


@app.get("/users/{user_id}/contacts/bulk-text")
def get_contacts_text(user_id: str) -> dict[str, Any]:
    state = _load_state(user_id)
    return {"user_id": user_id, "texts": export_people_by_category(state.people, sort_categories(state.categories))}


@app.put("/users/{user_id}/contacts/bulk-text")
def put_contacts_text(user_id: str, background_tasks: BackgroundTasks, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """Replace the contacts of the given categories. Body: {texts: {category_id: text}}."""
    state = _load_state(user_id)
    texts = payload.get("texts")
    if not isinstance(texts, dict):
        raise HTTPException(status_code=400, detail="texts must be an object")

    try:
        state.people = bulk_edit_people(
            {str(key): str(value or "") for key, value in texts.items()},
            state.people,
            state.categories,
        )
    except BulkImportError as exc:
        raise HTTPException(status_code=400, detail=_bulk_error_detail(exc)) from exc

    _schedule_save(background_tasks, user_id, state)
    return _contacts_response(state)


@app.post("/users/{user_id}/contacts/vcf")
async def import_contacts_vcf(
    user_id: str,
    background_tasks: BackgroundTasks,
    vcf_file: UploadFile = File(...),
    category: str = Form("other"),
) -> dict[str, Any]:
    """Import a .vcf upload into one category; returns duplicate warnings too."""
    state = _load_state(user_id)
    try:
        raw = await vcf_file.read(MAX_VCF_BYTES + 1)
        if len(raw) > MAX_VCF_BYTES:
            raise ValueError("VCF file is too large")
        text = raw.decode("utf-8-sig", errors="replace")
        imported = import_vcf(text, category)
    except (VCFParseError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.error(
            "vcf_import_error | user_id=%s | error_type=%s | error=%s",
            user_id,
            type(exc).__name__,
            exc,
            exc_info=True,
        )
        raise HTTPException(status_code=500, detail="Unexpected server error while importing VCF.") from exc
    finally:
        await vcf_file.close()

    warnings = []
    for person in imported:
        matches = find_potential_duplicates(person, state.people)
        if matches:
            warnings.append(
                {"name": person.name, "explanation": get_duplicate_explanation(matches[0])}
            )
        if person.photo:
            photo_cache.set(person.id, person.photo)

    state.people = list(state.people) + imported
    _schedule_save(background_tasks, user_id, state)
    return {
        **_contacts_response(state),
        "imported": len(imported),
        "duplicate_warnings": warnings,
    }


@app.post("/users/{user_id}/contacts/phones/validate")
def validate_contact_phones(user_id: str, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """Form-time phone validation. Body: {phones, exclude_id?}."""
    state = _load_state(user_id)
    phones = payload.get("phones") or []
    if not isinstance(phones, list):
        raise HTTPException(status_code=400, detail="phones must be a list")
    exclude_id: Optional[str] = payload.get("exclude_id")
    result = validate_phone_numbers(phones, state.people, exclude_id)
    return result.model_dump(mode="json")


@app.get("/photos/stats")
def photo_stats() -> dict[str, Any]:
    return photo_cache.get_stats()


if __name__ == "__main__":
    setup_logging()
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("api:app", host="0.0.0.0", port=port, reload=False)
