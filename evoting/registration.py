# Filename: evoting/registration.py
# Biometric reference registration and voter profiles.

import logging

from .capture import decode_image, encode_png
from .errors import InvalidImage
from .models import BIOMETRIC_MODALITIES

logger = logging.getLogger(__name__)

BIOMETRIC_BUCKET = "biometrics"
AVATAR_BUCKET = "avatars"


def _normalise(image_data):
    try:
        return encode_png(decode_image(image_data))
    except ValueError as e:
        raise InvalidImage(f"Image is invalid: {e}") from e


class Registrar:
    def __init__(self, store, blobs):
        self.store = store
        self.blobs = blobs

    def register_biometric(self, voter_id, modality, image_data):
        """Store (or replace) the voter's reference image for a modality."""
        if modality not in BIOMETRIC_MODALITIES:
            raise ValueError(f"Unknown biometric modality: {modality}")
        payload = _normalise(image_data)
        key = self.blobs.upload(BIOMETRIC_BUCKET, f"{voter_id}/{modality}.png", payload, upsert=True)
        ref = self.store.save_reference(voter_id, modality, payload, image_path=key)
        logger.info("Registered %s reference for voter %s", modality, voter_id)
        return ref

    def registered_modalities(self, voter_id):
        return [m for m in BIOMETRIC_MODALITIES if self.store.get_reference(voter_id, m) is not None]

    def save_profile(self, voter_id, full_name=None, email=None):
        fields = {}
        if full_name:
            fields["full_name"] = full_name
        if email is not None:
            fields["email"] = email
        return self.store.save_profile(voter_id, **fields)

    def upload_avatar(self, voter_id, image_data):
        payload = _normalise(image_data)
        path = f"{voter_id}.png"
        self.blobs.upload(AVATAR_BUCKET, path, payload, upsert=True)
        return self.store.save_profile(voter_id, avatar_url=self.blobs.public_url_for(AVATAR_BUCKET, path))

    def profile_summary(self, voter_id):
        profile = self.store.get_profile(voter_id)
        return {
            "id": voter_id,
            "fullName": profile.full_name if profile else None,
            "email": profile.email if profile else None,
            "avatarUrl": profile.avatar_url if profile else None,
            "registeredModalities": self.registered_modalities(voter_id),
            "hasVoted": bool(self.store.votes_for_voter(voter_id)),
        }
