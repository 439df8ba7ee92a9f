import json
import logging
from dataclasses import dataclass

import requests

from errors import UploadError
from skill_categories import category_for_skills, image_for_skills

logger = logging.getLogger(__name__)

ATTRIBUTE_LABELS = (
    ('learner_id', 'Learner ID'),
    ('learner_name', 'Learner'),
    ('host_id', 'Host ID'),
    ('host_name', 'Host'),
    ('workshop_id', 'Workshop ID'),
    ('workshop_name', 'Workshop'),
    ('workshop_description', 'Workshop Description'),
    ('tools_used', 'Tools Used'),
    ('skills_learned', 'Skills Learned'),
    ('session_duration', 'Session Duration (hours)'),
    ('session_start_date_time', 'Session Start'),
    ('wallet_address', 'Wallet Address'),
)


@dataclass
class PublishedMetadata:
    cid: str
    uri: str


def build_nft_metadata(record, image_base_url=''):
    """Wrap a Proof of Skill record in ERC-721 style metadata."""
    data = record.to_dict()
    skills = data['skills_learned']
    attributes = []
    for key, label in ATTRIBUTE_LABELS:
        value = data.get(key)
        if isinstance(value, list):
            value = ', '.join(str(v) for v in value)
        attributes.append({'trait_type': label, 'value': value})
    attributes.append({'trait_type': 'Category', 'value': category_for_skills(skills).value})

    return {
        'name': f'Proof of Skill: {data["workshop_name"]}',
        'description': f'{data["learner_name"]} completed "{data["workshop_name"]}" hosted by {data["host_name"]}.',
        'image': image_for_skills(skills, image_base_url),
        'external_url': '',
        'attributes': attributes,
    }


class MetadataPublisher:
    """Uploads Proof of Skill metadata to an IPFS add endpoint (Filebase RPC)."""

    def __init__(self, api_url, api_key, timeout=30, wrap=True, image_base_url='', http=None):
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = timeout
        self.wrap = wrap
        self.image_base_url = image_base_url
        self.http = http or requests.Session()

    def render(self, record):
        if self.wrap:
            return build_nft_metadata(record, self.image_base_url)
        return record.to_dict()

    def publish(self, record):
        payload = json.dumps(self.render(record))
        files = {
            'file': ('workshop.json', payload, 'application/json')
        }
        headers = {
            'Authorization': f'Bearer {self.api_key}'
        }

        try:
            response = self.http.post(self.api_url, files=files, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise UploadError(f'IPFS upload failed: {e}')

        if not response.ok:
            logger.error(f'IPFS upload failed: {response.status_code} {response.text}')
            raise UploadError(
                f'IPFS upload failed: {response.status_code} {response.reason} - {response.text}',
                response_status=response.status_code,
                response_text=response.text,
            )

        try:
            cid = response.json()['Hash']
        except (ValueError, KeyError, TypeError):
            raise UploadError(f'IPFS upload returned no content identifier: {response.text}',
                              response_status=response.status_code, response_text=response.text)

        logger.info(f'Metadata for booking {record.booking_id} pinned as {cid}')
        return PublishedMetadata(cid=cid, uri=f'ipfs://{cid}')

    def close(self):
        self.http.close()
