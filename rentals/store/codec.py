"""
Sérialisation/désérialisation du blob d'audit de commande (champ description du Customer).
Format: ORDER_B64:<base64(zlib(json))>
- L'encodage doit faire l'aller-retour sans perte et respecter la taille max du champ hôte.
  fit_order_blob réduit l'instantané (coordonnées d'abord) plutôt que d'échouer.
- Un blob corrompu lève ObligationEncodingError (jamais de valeur inventée).
"""
import base64
import binascii
import json
import logging
import zlib
from typing import Any, Dict, Optional

from rentals import config
from rentals.errors import ObligationEncodingError

logger = logging.getLogger(__name__)

BLOB_PREFIX = "ORDER_B64:"

# module rentals.store.codec
def encode_order_blob(snapshot: Dict[str, Any], max_chars: Optional[int] = None) -> str:
    limit = config.PSEUDO_STORE_BLOB_MAX_CHARS if max_chars is None else max_chars
    try:
        raw = json.dumps(snapshot, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise ObligationEncodingError(f"Instantané non sérialisable: {e}") from e
    blob = BLOB_PREFIX + base64.b64encode(zlib.compress(raw, 9)).decode("ascii")
    if limit and len(blob) > limit:
        raise ObligationEncodingError(
            f"Blob de commande trop long ({len(blob)} > {limit} caractères)",
            size=len(blob),
            limit=limit,
        )
    return blob

def decode_order_blob(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Extrait l'instantané depuis un texte libre.
    - Retourne None si le préfixe est absent (client sans commande).
    - Lève ObligationEncodingError si le contenu est illisible.
    """
    if not text:
        return None
    idx = text.find(BLOB_PREFIX)
    if idx == -1:
        return None
    payload = text[idx + len(BLOB_PREFIX):].strip()
    if not payload:
        raise ObligationEncodingError("Blob de commande vide")
    try:
        data = json.loads(zlib.decompress(base64.b64decode(payload, validate=True)).decode("utf-8"))
    except (binascii.Error, zlib.error, UnicodeDecodeError, ValueError) as e:
        raise ObligationEncodingError(f"Blob de commande illisible: {e}") from e
    if not isinstance(data, dict):
        raise ObligationEncodingError("Blob de commande inattendu (objet JSON attendu)")
    return data

# Champs retirés dans cet ordre tant que le blob dépasse la taille du champ hôte
SHRINKABLE_FIELDS = ("phone", "email", "name", "auth", "dropoff", "urgent", "flow")


def fit_order_blob(snapshot: Dict[str, Any], max_chars: Optional[int] = None) -> Optional[str]:
    """
    Encode l'instantané en le réduisant jusqu'à ce qu'il tienne dans le champ hôte.
    Les coordonnées partent en premier; ref et total sont toujours conservés.
    Retourne None (avec un avertissement) si même la forme minimale est trop longue.
    """
    reduced = dict(snapshot)
    dropped = []
    while True:
        try:
            blob = encode_order_blob(reduced, max_chars=max_chars)
        except ObligationEncodingError as e:
            if e.extra.get("size") is None:
                raise
            field = next((f for f in SHRINKABLE_FIELDS if f in reduced), None)
            if field is None:
                logger.warning("store.codec blob skipped ref=%s error=%s", snapshot.get("ref"), e)
                return None
            reduced.pop(field)
            dropped.append(field)
            continue
        if dropped:
            logger.info("store.codec blob shrunk ref=%s dropped=%s", snapshot.get("ref"), ",".join(dropped))
        return blob
