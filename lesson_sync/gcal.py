from __future__ import annotations

import logging
from typing import Optional, Protocol

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/gmail.send",
]


def _load_credentials(client_secrets_file: str, token_file: str) -> Credentials:
    creds = None
    if token_file:
        try:
            creds = Credentials.from_authorized_user_file(token_file, SCOPES)
        except (OSError, ValueError):
            creds = None
    if not creds or not creds.valid:
        if creds and creds.expired and creds.refresh_token:
            creds.refresh(Request())
        else:
            flow = InstalledAppFlow.from_client_secrets_file(client_secrets_file, SCOPES)
            creds = flow.run_local_server(port=0)
        with open(token_file, "w") as token:
            token.write(creds.to_json())
    return creds


def build_service(name: str, version: str, client_secrets_file: str, token_file: str):
    creds = _load_credentials(client_secrets_file, token_file)
    return build(name, version, credentials=creds, cache_discovery=False)


class CalendarProvider(Protocol):
    def create_event(self, calendar_id: str, body: dict, notify: bool = True) -> str: ...

    def update_event(self, calendar_id: str, event_id: str, body: dict, notify: bool = True) -> None: ...

    def get_event(self, calendar_id: str, event_id: str) -> Optional[dict]: ...

    def delete_event(self, calendar_id: str, event_id: str, notify: bool = True) -> None: ...


class GoogleCalendar:
    """Calendar v3 events API behind the provider interface.

    ``send_updates`` is what Google does with attendee mail on writes made
    with ``notify=True``; writes made with ``notify=False`` always send
    ``"none"``.
    """

    def __init__(self, service, send_updates: str = "all") -> None:
        self.service = service
        self.send_updates = send_updates

    def _send_updates(self, notify: bool) -> str:
        return self.send_updates if notify else "none"

    def create_event(self, calendar_id: str, body: dict, notify: bool = True) -> str:
        event = (
            self.service.events()
            .insert(calendarId=calendar_id, body=body, sendUpdates=self._send_updates(notify))
            .execute()
        )
        logging.debug("Inserted event %s in %s", event.get("id"), calendar_id)
        return event["id"]

    def update_event(self, calendar_id: str, event_id: str, body: dict, notify: bool = True) -> None:
        (
            self.service.events()
            .patch(calendarId=calendar_id, eventId=event_id, body=body, sendUpdates=self._send_updates(notify))
            .execute()
        )

    def get_event(self, calendar_id: str, event_id: str) -> Optional[dict]:
        try:
            event = self.service.events().get(calendarId=calendar_id, eventId=event_id).execute()
        except HttpError as exc:
            if exc.resp.status in (404, 410):
                return None
            raise
        # deleted events stay readable with status "cancelled"
        if event.get("status") == "cancelled":
            return None
        return event

    def delete_event(self, calendar_id: str, event_id: str, notify: bool = True) -> None:
        (
            self.service.events()
            .delete(calendarId=calendar_id, eventId=event_id, sendUpdates=self._send_updates(notify))
            .execute()
        )
