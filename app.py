#!/usr/bin/env python3
"""
Blog Post Extractor - Web Interface

HTTP API around the extraction pipeline: synchronous previews, background
jobs with live progress over Socket.IO, and seed URL checks. Job state and
results are kept in memory only.
"""

from flask import Flask, request, jsonify
from flask_socketio import SocketIO, emit
import os
import asyncio
import logging
import threading
import uuid
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import requests

from blog_post_extractor import BlogPostExtractor, parse_date_arg, parse_languages
from scraper_config import ScraperConfig
from scraper_errors import DiscoveryError, ScraperError
from url_utils import normalize

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key')

socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    logger=False,
    engineio_logger=False,
    async_mode='threading'
)

application = app


def safe_emit(event, data):
    """Emit a SocketIO event, logging instead of raising if delivery fails"""
    try:
        socketio.emit(event, data)
    except Exception as e:
        logger.error(f"❌ SocketIO emit error: {e}")


def parse_request(payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Validate a preview/job body: {url, maxPosts?, dateRangeStart?, dateRangeEnd?,
    languages?, includeUndetectedLanguage?}"""
    payload = payload or {}
    url = (payload.get('url') or '').strip()
    if not url:
        raise ValueError('No URL provided')

    max_posts = payload.get('maxPosts')
    if max_posts is not None:
        try:
            max_posts = int(max_posts)
        except (TypeError, ValueError):
            raise ValueError('maxPosts must be an integer')
        if max_posts < 1:
            raise ValueError('maxPosts must be at least 1')

    include_undetected = payload.get('includeUndetectedLanguage', True)
    if not isinstance(include_undetected, bool):
        raise ValueError('includeUndetectedLanguage must be a boolean')

    return {
        'seed_url': normalize(url),
        'max_posts': max_posts,
        'date_range_start': parse_date_arg(payload.get('dateRangeStart')),
        'date_range_end': parse_date_arg(payload.get('dateRangeEnd')),
        'languages': parse_languages(payload.get('languages')),
        'include_undetected': include_undetected,
    }


class ExtractionJobManager:
    """Runs extraction jobs in background threads and reports progress"""

    def __init__(self, config: Optional[ScraperConfig] = None, extractor_factory=None):
        self.config = config
        self.extractor_factory = extractor_factory or BlogPostExtractor
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.results: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def _update(self, job_id: str, **fields):
        with self._lock:
            self.jobs[job_id].update(fields)
        safe_emit('job_update', {'job_id': job_id, **fields})

    def run_job(self, job_id: str, params: Dict[str, Any]):
        """Body of a job; runs on its own thread with its own event loop"""
        def progress_callback(done, total, message):
            progress = int(done / total * 100) if total else 0
            self._update(job_id, status='running', message=message, progress=min(100, progress))

        try:
            self._update(job_id, status='running', message=f"Discovering posts on {params['seed_url']}...", progress=0)
            extractor = self.extractor_factory(self.config, progress_callback=progress_callback)
            report = asyncio.run(extractor.run(**params))

            with self._lock:
                self.results[job_id] = report.to_dict()
            self._update(job_id, status='completed', progress=100,
                         message=f'Extraction completed! Found {len(report.posts)} posts.',
                         total_items=len(report.posts),
                         completed_at=datetime.now().isoformat())
        except Exception as e:
            logger.error(f"Job {job_id} failed: {e}", exc_info=not isinstance(e, ScraperError))
            self._update(job_id, status='error', message=f'Error: {e}', error=str(e), progress=0,
                         completed_at=datetime.now().isoformat())

    def start_job(self, params: Dict[str, Any]) -> str:
        """Start a new extraction job and return its id"""
        job_id = str(uuid.uuid4())
        with self._lock:
            self.jobs[job_id] = {
                'seed_url': params['seed_url'],
                'started_at': datetime.now().isoformat(),
                'status': 'queued',
            }

        thread = threading.Thread(target=self.run_job, args=(job_id, params))
        thread.daemon = True
        thread.start()
        return job_id


job_manager = ExtractionJobManager()


@app.route('/api/preview', methods=['POST'])
def preview():
    """Run the pipeline synchronously and return the posts"""
    try:
        params = parse_request(request.get_json(silent=True))
    except ValueError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    try:
        extractor = job_manager.extractor_factory(job_manager.config)
        report = asyncio.run(extractor.run(**params))
    except DiscoveryError as e:
        return jsonify({'success': False, 'error': str(e)}), 422
    except Exception as e:
        logger.error(f"Preview failed: {e}", exc_info=True)
        return jsonify({'success': False, 'error': str(e)}), 500

    data = report.to_dict()
    return jsonify({'success': True, 'posts': data['posts'], 'total': data['total'],
                    'strategies': data['strategies'], 'validated': data['validated']})


@app.route('/api/jobs', methods=['POST'])
def create_job():
    """Create a new extraction job"""
    try:
        params = parse_request(request.get_json(silent=True))
    except ValueError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    job_id = job_manager.start_job(params)
    return jsonify({'success': True, 'job_id': job_id, 'message': 'Extraction job started'})


@app.route('/api/jobs')
def list_jobs():
    """List all jobs"""
    return jsonify(job_manager.jobs)


@app.route('/api/jobs/<job_id>/status')
def get_job_status(job_id):
    """Get status of a specific job"""
    job = job_manager.jobs.get(job_id)
    if job is None:
        return jsonify({'error': 'Job not found'}), 404
    return jsonify({**job, 'job_id': job_id})


@app.route('/api/jobs/<job_id>/results')
def get_job_results(job_id):
    """Get results of a completed job"""
    job = job_manager.jobs.get(job_id)
    if job is None:
        return jsonify({'error': 'Job not found'}), 404
    if job.get('status') != 'completed':
        return jsonify({'error': 'Job not completed successfully', 'status': job.get('status')}), 400
    return jsonify(job_manager.results[job_id])


@app.route('/api/validate-url', methods=['POST'])
def validate_url():
    """Check that a seed URL is well formed and reachable"""
    url = ((request.get_json(silent=True) or {}).get('url') or '').strip()
    if not url:
        return jsonify({'valid': False, 'error': 'No URL provided'})

    url = normalize(url)
    parsed = urlparse(url)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        return jsonify({'valid': False, 'error': 'Invalid URL format'})

    config = job_manager.config or ScraperConfig.from_env()
    try:
        response = requests.head(url, timeout=config.http_timeout, allow_redirects=True,
                                 headers={'User-Agent': config.user_agent})
    except requests.RequestException as e:
        return jsonify({'valid': False, 'error': str(e)})

    return jsonify({
        'valid': response.status_code < 400,
        'url': url,
        'status_code': response.status_code,
        'content_type': response.headers.get('content-type', 'unknown')
    })


@socketio.on('connect')
def handle_connect():
    """Handle client connection"""
    emit('connected', {'message': 'Connected to blog post extractor'})


@socketio.on('disconnect')
def handle_disconnect():
    """Handle client disconnection"""
    logger.info('Client disconnected')


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    port = int(os.environ.get('PORT', 10000))
    socketio.run(app, host='0.0.0.0', port=port, debug=False, allow_unsafe_werkzeug=True)
