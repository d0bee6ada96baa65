"""
Google Tasks access for the Canvas sync.

Handles OAuth2 credentials, resolving the target list by name, reading every
active task in it and the single-task insert/patch calls.
"""

import logging
from typing import Dict, List, Optional

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

from confparser import SyncConfig

logger = logging.getLogger(__name__)

SCOPES = ['https://www.googleapis.com/auth/tasks']
AUTH_URI = 'https://accounts.google.com/o/oauth2/auth'
TOKEN_URI = 'https://oauth2.googleapis.com/token'
PAGE_SIZE = 100


class OAuthError(Exception):
    """Raised when the consent flow does not yield a refresh token."""


def _client_config(config: SyncConfig) -> Dict:
    return {
        'installed': {
            'client_id': config.google_client_id,
            'client_secret': config.google_client_secret,
            'auth_uri': AUTH_URI,
            'token_uri': TOKEN_URI,
            'redirect_uris': ['http://localhost'],
        }
    }


def run_local_oauth(config: SyncConfig) -> str:
    """Run the browser consent flow and return a refresh token.

    The flow listens on localhost:<oauth_port> for the callback and tries to
    open the consent page in the default browser; the URL is logged as well.
    """
    config.validate_google_env()

    flow = InstalledAppFlow.from_client_config(_client_config(config), SCOPES)
    logger.info(f"[Google OAuth] Opening browser for consent, listening on http://localhost:{config.oauth_port} ...")

    creds = flow.run_local_server(
        port=config.oauth_port,
        authorization_prompt_message="[Google OAuth] If the browser did not open, visit: {url}",
        success_message="Authentication successful! You can close this tab.",
        access_type='offline',
        prompt='consent',
    )

    if not creds.refresh_token:
        raise OAuthError("No refresh token returned by Google. Remove the prior consent and retry.")
    return creds.refresh_token


def build_credentials(config: SyncConfig) -> Credentials:
    """Create refreshed credentials from the configured refresh token."""
    creds = Credentials(
        None,
        refresh_token=config.google_refresh_token,
        token_uri=TOKEN_URI,
        client_id=config.google_client_id,
        client_secret=config.google_client_secret,
        scopes=SCOPES,
    )
    creds.refresh(Request())
    return creds


class GoogleTasksStore:
    """Thin wrapper over the Google Tasks API v1 service."""

    def __init__(self, service):
        self.service = service

    @classmethod
    def from_config(cls, config: SyncConfig) -> 'GoogleTasksStore':
        service = build('tasks', 'v1', credentials=build_credentials(config))
        logger.debug("Google Tasks API initialized")
        return cls(service)

    def find_list_id(self, name: str) -> Optional[str]:
        """Return the id of the task list titled exactly `name`, if any."""
        page_token = None
        while True:
            params = {'maxResults': PAGE_SIZE}
            if page_token:
                params['pageToken'] = page_token
            results = self.service.tasklists().list(**params).execute()

            for task_list in results.get('items', []):
                if task_list.get('title') == name:
                    return task_list['id']

            page_token = results.get('nextPageToken')
            if not page_token:
                return None

    def ensure_list_exists(self, name: str) -> str:
        """Find the task list by exact title, creating it when missing."""
        list_id = self.find_list_id(name)
        if list_id:
            logger.debug(f"Using existing Google Tasks list '{name}': {list_id}")
            return list_id

        new_list = self.service.tasklists().insert(body={'title': name}).execute()
        logger.info(f"Created new Google Tasks list: '{name}' (ID: {new_list['id']})")
        return new_list['id']

    def list_active_tasks(self, list_id: str) -> List[Dict]:
        """Get every non-completed, non-hidden, non-deleted task in a list."""
        tasks = []
        page_token = None
        while True:
            params = {
                'tasklist': list_id,
                'maxResults': PAGE_SIZE,
                'showCompleted': False,
                'showHidden': False,
                'showDeleted': False,
            }
            if page_token:
                params['pageToken'] = page_token
            result = self.service.tasks().list(**params).execute()
            tasks.extend(result.get('items', []))

            page_token = result.get('nextPageToken')
            if not page_token:
                break

        logger.debug(f"Found {len(tasks)} active task(s) in list {list_id}")
        return tasks

    def create_task(self, list_id: str, body: Dict) -> Dict:
        return self.service.tasks().insert(tasklist=list_id, body=body).execute()

    def update_task(self, list_id: str, task_id: str, body: Dict) -> Dict:
        # Title, notes and due are always sent together
        return self.service.tasks().patch(tasklist=list_id, task=task_id, body=body).execute()
