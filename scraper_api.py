from flask import Flask, request, jsonify
from station_scraper import run_selection, resolve_output_dir, setup_logging, CATEGORY_CONFIGS, ALL_SELECTION

app = Flask(__name__)

@app.route("/scrape", methods=["POST"])
def scrape():
    data = request.get_json(silent=True) or {}
    category = data.get("category")

    if not category:
        return jsonify({"error": "Missing category"}), 400
    if category != ALL_SELECTION and category not in CATEGORY_CONFIGS:
        valid = ", ".join(list(CATEGORY_CONFIGS) + [ALL_SELECTION])
        return jsonify({"error": f"Unknown category '{category}'. Expected one of: {valid}"}), 400

    # Blank or missing directories fall back to the working directory
    output_dir = resolve_output_dir(data.get("outputDir"))
    results = run_selection(category, output_dir)

    return jsonify({
        "outputDir": output_dir,
        "results": results,
        "summary": f"Scraped {len(results)} categor{'y' if len(results) == 1 else 'ies'} into {output_dir}."
    })

if __name__ == "__main__":
    setup_logging()
    app.run(host="0.0.0.0", port=8000)
