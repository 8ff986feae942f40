#!/usr/bin/env python
"""
Calibration Client Module - Interface to a fossil calibration web service

This module provides a client that looks up fossil calibrations for higher
taxon names and keeps the results in a directory of per-taxon JSON files, so
that repeated runs over many gene families only query each taxon once.
"""

import os
import json
import time
import logging
import requests
from dataclasses import dataclass, field, asdict, replace

from ratogram.exceptions import ParseError


@dataclass
class FossilRecord:
    """A fossil calibration for the node labelled with calibrated_taxon."""
    nfos: str
    calibrated_taxon: str
    crown_vs_stem: str = 'crown'
    min_age: float = None
    max_age: float = None
    fossil_name: str = ''
    extra: dict = field(default_factory=dict)

    @property
    def is_crown(self):
        return (self.crown_vs_stem or '').strip().lower() == 'crown'

    def renamed(self, taxon):
        """Return a copy of this record that calibrates another node label."""
        return replace(self, calibrated_taxon=taxon, extra=dict(self.extra))

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        """
        Build a record from a service response or cache entry. Field names
        of the service are accepted in either snake case or CamelCase, any
        unknown fields are kept in 'extra'.
        """
        lookup = {k.lower().replace('_', ''): v for k, v in data.items() if k != 'extra'}

        def pick(*names):
            for name in names:
                if name in lookup and lookup[name] not in (None, ''):
                    return lookup[name]
            return None

        def age(*names):
            value = pick(*names)
            return float(value) if value is not None else None

        known = {'nfos', 'id', 'calibratedtaxon', 'crownvsstem', 'crownorstem',
                 'minage', 'maxage', 'fossilname'}
        extra = dict(data.get('extra') or {})
        extra.update({k: v for k, v in data.items() if k.lower().replace('_', '') not in known and k != 'extra'})

        nfos = pick('nfos', 'id')
        taxon = pick('calibratedtaxon')
        if nfos is None or taxon is None:
            raise ValueError(f"Fossil record lacks identifier or calibrated taxon: {data}")

        return cls(
            nfos=str(nfos),
            calibrated_taxon=str(taxon),
            crown_vs_stem=str(pick('crownvsstem', 'crownorstem') or 'crown').lower(),
            min_age=age('minage'),
            max_age=age('maxage'),
            fossil_name=str(pick('fossilname') or ''),
            extra=extra,
        )


class FossilCalibrationClient:
    """Client for a fossil calibration web service with a per-taxon file cache."""

    # API base URL
    CALIBRATION_API_URL = "https://fossilcalibrations.org/api/v1/calibrations"

    def __init__(self, config=None, session=None):
        """
        Initialize with optional configuration for API and cache settings.

        Args:
            config (dict, optional): Configuration for API settings.
                                     May include 'cache_dir', 'base_url',
                                     'rate_limit', 'timeout', 'retries',
                                     'skip_remote' and 'cache_empty'.
            session (requests.Session, optional): Session used for requests.
        """
        self.config = config or {}
        self.logger = logging.getLogger(__name__)
        self.session = session or requests

        # Setup cache
        self.cache_dir = self.config.get('cache_dir', '.fossil_cache')
        self._setup_cache()

        # Request settings
        self.base_url = self.config.get('base_url', self.CALIBRATION_API_URL)
        self.rate_limit = self.config.get('rate_limit', 1.0)  # seconds between retries
        self.timeout = self.config.get('timeout', 60)  # seconds
        self.retries = self.config.get('retries', 3)

        # Offline mode: only the cache is consulted
        self.skip_remote = self.config.get('skip_remote', False)

        # Whether an empty response is cached, which stops future retries for the taxon
        self.cache_empty = self.config.get('cache_empty', False)

        # Number of remote requests issued, successful or not
        self.fetch_count = 0

        self.logger.info(f"Calibration client initialized with cache_dir={self.cache_dir}")
        if self.skip_remote:
            self.logger.warning("Remote calibration queries are disabled (skip_remote=True)")

    def cache_path(self, taxon):
        """Return the cache file path for a taxon name."""
        safe_name = taxon.replace(os.sep, '_')
        return os.path.join(self.cache_dir, f"{safe_name}.json")

    def is_cached(self, taxon):
        return os.path.exists(self.cache_path(taxon))

    def fetch_fossils(self, taxon):
        """
        Return the fossil calibrations for a taxon, from the cache if present,
        otherwise from the web service.

        Args:
            taxon (str): Higher taxon name, e.g. 'Primates'.

        Returns:
            list: FossilRecord objects, possibly empty.
        """
        if self.is_cached(taxon):
            self.logger.info(f"Already fetched fossils for {taxon}")
            return self.read_cache(taxon)

        if self.skip_remote:
            self.logger.warning(f"No cached fossils for {taxon} and remote queries are disabled")
            return []

        self.logger.info(f"Fetching fossils for {taxon}")
        payload = self._do_request(taxon)
        if payload is None:
            return []

        records = []
        for item in payload:
            try:
                records.append(FossilRecord.from_dict(item))
            except ValueError as e:
                self.logger.warning(f"Ignoring malformed fossil record for {taxon}: {str(e)}")

        if records or self.cache_empty:
            self.write_cache(taxon, records)
        if not records:
            self.logger.info(f"No fossils for {taxon}")
        return records

    def read_cache(self, taxon):
        """
        Read the cached records for a taxon.

        Args:
            taxon (str): Taxon name.

        Returns:
            list: FossilRecord objects.

        Raises:
            ParseError: If the cache file is not a list of fossil records.
        """
        path = self.cache_path(taxon)
        self.logger.debug(f"Going to read fossils in {path}")
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            if not isinstance(data, list):
                raise ValueError(f"expected a list of records, got {type(data).__name__}")
            return [FossilRecord.from_dict(item) for item in data]
        except (ValueError, AttributeError) as e:
            raise ParseError(f"Corrupt fossil cache {path}: {str(e)}", context={'taxon': taxon}) from e

    def write_cache(self, taxon, records):
        """
        Write records for a taxon to the cache. Failing to write is not
        recoverable and propagates.

        Args:
            taxon (str): Taxon name.
            records (list): FossilRecord objects.
        """
        path = self.cache_path(taxon)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump([r.to_dict() for r in records], f, ensure_ascii=False, indent=2, sort_keys=True)
        self.logger.debug(f"Cached {len(records)} fossils for {taxon} in {path}")

    def clear_cache(self):
        """Remove all cached calibration files."""
        self.logger.info("Clearing calibration cache")
        for filename in os.listdir(self.cache_dir):
            if filename.endswith('.json'):
                os.unlink(os.path.join(self.cache_dir, filename))

    def _do_request(self, taxon):
        """
        Query the web service with retries.

        Returns:
            list or None: The list of raw records, None if all attempts failed.
        """
        params = {'format': 'json', 'clade': taxon}
        for attempt in range(self.retries):
            self.fetch_count += 1
            try:
                response = self.session.get(self.base_url, params=params, timeout=self.timeout)

                if response.status_code == 200:
                    data = response.json()
                    if isinstance(data, dict):
                        data = data.get('results', data.get('calibrations', []))
                    return data or []

                # Unknown clade, nothing to retry
                if response.status_code == 404:
                    return []

                self.logger.warning(
                    f"Failed to get fossils for {taxon}: {response.status_code} - {response.text}"
                )

            except (requests.RequestException, ValueError) as e:
                self.logger.warning(f"Request error (attempt {attempt + 1}/{self.retries}): {str(e)}")

            # Wait before retry
            if attempt < self.retries - 1:
                time.sleep(self.rate_limit * (2 ** attempt))

        self.logger.error(f"Failed to get fossils for {taxon} after {self.retries} attempts")
        return None

    def _setup_cache(self):
        """Set up the cache directory."""
        if not os.path.exists(self.cache_dir):
            os.makedirs(self.cache_dir)
