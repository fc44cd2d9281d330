#!/usr/bin/env python3
"""
Flask web application for browsing the scored collocations of a run.

    python app.py --output data/colloc
    GET /collocations?q=new&topk=20
"""

import argparse
import os
import time

from flask import Flask, jsonify, request

from collocations.paths import DEFAULT_OUTPUT_DIR, NGRAM_OUTPUT_DIRECTORY
from collocations.runio import list_parts, read_scored_ngrams

DEFAULT_TOPK = 10
MAX_TOPK = 1000


def load_results(output_dir):
    """All (ngram, score) pairs of a finished run, best first."""
    parts = list_parts(os.path.join(output_dir, NGRAM_OUTPUT_DIRECTORY))
    scores = read_scored_ngrams(parts)
    return sorted(scores.items(), key=lambda kv: (-kv[1], kv[0]))


def create_app(output_dir=DEFAULT_OUTPUT_DIR):
    app = Flask(__name__)
    app.config["OUTPUT_DIR"] = output_dir
    app.config["RESULTS"] = load_results(output_dir)
    print(f"Loaded {len(app.config['RESULTS'])} collocations from {output_dir}")

    @app.route('/collocations')
    def collocations():
        """Top scored collocations, optionally filtered by a prefix."""
        prefix = request.args.get('q', '').strip().lower()
        try:
            topk = int(request.args.get('topk', DEFAULT_TOPK))
        except ValueError:
            return jsonify({'error': 'topk must be an integer'}), 400
        if topk < 1 or topk > MAX_TOPK:
            return jsonify({'error': f'topk must be between 1 and {MAX_TOPK}'}), 400

        start_time = time.perf_counter()
        results = []
        for text, score in app.config["RESULTS"]:
            if prefix and not text.startswith(prefix):
                continue
            results.append({'ngram': text, 'score': score})
            if len(results) >= topk:
                break
        lookup_time = (time.perf_counter() - start_time) * 1000  # Convert to milliseconds

        return jsonify({
            'results': results,
            'lookupTime': lookup_time,
            'totalResults': len(results),
            'query': prefix,
        })

    @app.route('/health')
    def health():
        """Health check endpoint."""
        return jsonify({
            'status': 'healthy',
            'collocations': len(app.config["RESULTS"]),
        })

    return app


if __name__ == '__main__':
    ap = argparse.ArgumentParser(description="Serve scored collocations.")
    ap.add_argument("--output", default=DEFAULT_OUTPUT_DIR, help="Output dir of a finished run")
    ap.add_argument("--port", type=int, default=5001)
    args = ap.parse_args()

    app = create_app(args.output)
    app.run(debug=True, host='0.0.0.0', port=args.port)
